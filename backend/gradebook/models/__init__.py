from gradebook.models.user import User
from gradebook.models.course import Course, CourseEnrollment
from gradebook.models.assessment import Assessment
from gradebook.models.question import Question
from gradebook.models.submission import Submission
from gradebook.models.grade import Grade, GradesSummary
from gradebook.models.assignment import Assignment
from gradebook.models.notification import Notification, NotificationType

__all__ = [
    "User",
    "Course",
    "CourseEnrollment",
    "Assessment",
    "Question",
    "Submission",
    "Grade",
    "GradesSummary",
    "Assignment",
    "Notification",
    "NotificationType",
]
