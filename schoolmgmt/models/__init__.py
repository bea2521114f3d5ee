# Import all models to ensure they're registered with SQLAlchemy
from schoolmgmt.database import Base
from schoolmgmt.models.users import User, Role, Student, SectionStudent, SectionUser
from schoolmgmt.models.schools import School, Section, Class, Subject
from schoolmgmt.models.academics import AcademicSession, Term, Exam, ExamResult
from schoolmgmt.models.attendance import Attendance
from schoolmgmt.models.finance import Fee, Transaction, Payment
from schoolmgmt.models.communication import Message
from schoolmgmt.models.notifications import Notification
