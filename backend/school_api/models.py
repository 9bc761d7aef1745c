import uuid
from datetime import datetime, timezone
from typing import List, Optional, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

Role = Literal["admin", "teacher", "student", "parent"]
Term = Literal["first", "second", "third", "final"]
ScoreKind = Literal["exam", "quiz", "assignment", "project", "participation"]
GradeStatus = Literal["draft", "published", "final"]
AttendanceStatus = Literal["present", "absent", "late", "excused"]
Weekday = Literal["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


def iso_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    return str(uuid.uuid4())


def reject_null(value):
    # Update payloads may omit a required field but never clear it.
    if value is None:
        raise ValueError("Field cannot be null")
    return value


class Record(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str = Field(default_factory=new_id)
    created_at: str = Field(default_factory=iso_now)
    updated_at: str = Field(default_factory=iso_now)


# Users


class UserBase(BaseModel):
    first_name: str
    last_name: str
    email: str
    role: Role = "student"
    phone: Optional[str] = None
    date_of_birth: Optional[str] = None
    address: Optional[str] = None
    profile_picture: Optional[str] = None
    active: bool = True

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        value = value.strip().lower()
        if "@" not in value:
            raise ValueError("Please enter a valid email")
        return value


class UserRecord(UserBase, Record):
    password_hash: Optional[str] = Field(default=None, exclude=True)


class UserRegister(UserBase):
    password: str = Field(min_length=6)


class AuthLogin(BaseModel):
    email: str
    password: str


class AuthToken(BaseModel):
    access_token: str
    token_type: str = "bearer"


class PasswordUpdate(BaseModel):
    current_password: str
    new_password: str = Field(min_length=6)


# Students


class EmergencyContact(BaseModel):
    name: Optional[str] = None
    relationship: Optional[str] = None
    phone: Optional[str] = None


class MedicalInfo(BaseModel):
    allergies: List[str] = []
    medications: List[str] = []
    blood_type: Optional[str] = None
    doctor_name: Optional[str] = None
    doctor_phone: Optional[str] = None


class PreviousSchool(BaseModel):
    name: Optional[str] = None
    address: Optional[str] = None
    last_attended: Optional[str] = None


class Transport(BaseModel):
    route: Optional[str] = None
    bus_number: Optional[str] = None
    pickup_time: Optional[str] = None
    dropoff_time: Optional[str] = None


class StudentBase(BaseModel):
    admission_date: str
    current_class_id: Optional[str] = None
    parent_id: Optional[str] = None
    emergency_contact: Optional[EmergencyContact] = None
    medical_info: Optional[MedicalInfo] = None
    previous_school: Optional[PreviousSchool] = None
    status: Literal["active", "inactive", "graduated", "transferred"] = "active"
    transport: Optional[Transport] = None


class StudentRecord(StudentBase, Record):
    user_id: str
    student_number: str


class StudentCreate(StudentBase):
    first_name: str
    last_name: str
    email: str
    phone: Optional[str] = None
    date_of_birth: Optional[str] = None
    current_class_id: str


class StudentUpdate(BaseModel):
    current_class_id: Optional[str] = None
    parent_id: Optional[str] = None
    emergency_contact: Optional[EmergencyContact] = None
    medical_info: Optional[MedicalInfo] = None
    transport: Optional[Transport] = None
    status: Optional[Literal["active", "inactive", "graduated", "transferred"]] = None

    @field_validator("status")
    @classmethod
    def not_null(cls, value):
        return reject_null(value)


# Teachers


class Qualification(BaseModel):
    degree: Optional[str] = None
    institution: Optional[str] = None
    year: Optional[int] = None
    specialization: Optional[str] = None


class Experience(BaseModel):
    school: Optional[str] = None
    position: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    description: Optional[str] = None


class WorkingHours(BaseModel):
    start: Optional[str] = None
    end: Optional[str] = None
    days: List[Weekday] = []


class TeacherBase(BaseModel):
    hire_date: str
    department: str
    subject_ids: List[str] = []
    class_ids: List[str] = []
    qualification: Optional[Qualification] = None
    experience: List[Experience] = []
    status: Literal["active", "inactive", "on_leave", "terminated"] = "active"
    working_hours: Optional[WorkingHours] = None


class TeacherRecord(TeacherBase, Record):
    user_id: str
    teacher_number: str
    employee_id: str


class TeacherCreate(TeacherBase):
    first_name: str
    last_name: str
    email: str
    phone: Optional[str] = None
    date_of_birth: Optional[str] = None


class TeacherUpdate(BaseModel):
    department: Optional[str] = None
    subject_ids: Optional[List[str]] = None
    class_ids: Optional[List[str]] = None
    qualification: Optional[Qualification] = None
    experience: Optional[List[Experience]] = None
    working_hours: Optional[WorkingHours] = None
    status: Optional[Literal["active", "inactive", "on_leave", "terminated"]] = None

    @field_validator("department", "subject_ids", "class_ids", "experience", "status")
    @classmethod
    def not_null(cls, value):
        return reject_null(value)


# Classes


class ScheduleSlot(BaseModel):
    day: Weekday
    start_time: str
    end_time: Optional[str] = None
    room: Optional[str] = None


class ClassSubject(BaseModel):
    subject_id: str
    teacher_id: Optional[str] = None
    schedule: Optional[ScheduleSlot] = None


class ClassBase(BaseModel):
    name: str
    grade: str
    section: str
    academic_year: str
    class_teacher_id: Optional[str] = None
    subjects: List[ClassSubject] = []
    max_students: int = 40
    room: Optional[str] = None
    description: Optional[str] = None
    status: Literal["active", "inactive"] = "active"


class ClassRecord(ClassBase, Record):
    student_ids: List[str] = []


class ClassUpdate(BaseModel):
    name: Optional[str] = None
    grade: Optional[str] = None
    section: Optional[str] = None
    academic_year: Optional[str] = None
    class_teacher_id: Optional[str] = None
    subjects: Optional[List[ClassSubject]] = None
    max_students: Optional[int] = None
    room: Optional[str] = None
    description: Optional[str] = None
    status: Optional[Literal["active", "inactive"]] = None

    @field_validator(
        "name", "grade", "section", "academic_year", "subjects", "max_students", "status"
    )
    @classmethod
    def not_null(cls, value):
        return reject_null(value)


class ClassStudentAdd(BaseModel):
    student_id: str


# Subjects


class SubjectBase(BaseModel):
    name: str
    code: str
    description: Optional[str] = None
    credits: float = 1
    department: str
    grade: str
    is_elective: bool = False
    prerequisite_ids: List[str] = []
    status: Literal["active", "inactive"] = "active"

    @field_validator("name", "code")
    @classmethod
    def strip_text(cls, value: str) -> str:
        return value.strip()

    @field_validator("code")
    @classmethod
    def upper_code(cls, value: str) -> str:
        return value.upper()


class SubjectRecord(SubjectBase, Record):
    pass


class SubjectUpdate(BaseModel):
    name: Optional[str] = None
    code: Optional[str] = None
    description: Optional[str] = None
    credits: Optional[float] = None
    department: Optional[str] = None
    grade: Optional[str] = None
    is_elective: Optional[bool] = None
    prerequisite_ids: Optional[List[str]] = None
    status: Optional[Literal["active", "inactive"]] = None

    @field_validator(
        "name", "code", "credits", "department", "grade", "is_elective", "prerequisite_ids", "status"
    )
    @classmethod
    def not_null(cls, value):
        return reject_null(value)


# Grades


class ScoreEntry(BaseModel):
    kind: ScoreKind
    label: str
    score: float
    max_score: float
    weight: Optional[float] = 1
    date: str = Field(default_factory=iso_now)
    comments: Optional[str] = None


class GradeCreate(BaseModel):
    student_id: str
    subject_id: str
    class_id: str
    teacher_id: Optional[str] = None
    academic_year: str
    term: Term
    grades: List[ScoreEntry]
    comments: Optional[str] = None


class GradeRecord(Record):
    student_id: str
    subject_id: str
    teacher_id: str
    class_id: str
    academic_year: str
    term: Term
    grades: List[ScoreEntry] = []
    total_score: float = 0
    max_possible_score: float = 0
    percentage: float = 0
    letter_grade: Optional[str] = None
    gpa: Optional[float] = None
    status: GradeStatus = "draft"
    published_at: Optional[str] = None
    comments: Optional[str] = None


class GradeUpdate(BaseModel):
    grades: Optional[List[ScoreEntry]] = None
    comments: Optional[str] = None
    status: Optional[GradeStatus] = None


# Attendance


class AttendanceMark(BaseModel):
    student_id: str
    status: AttendanceStatus
    remarks: Optional[str] = None


class AttendanceCreate(BaseModel):
    class_id: str
    subject_id: Optional[str] = None
    teacher_id: Optional[str] = None
    date: str
    academic_year: str
    semester: Term
    period: Optional[int] = Field(default=None, ge=1, le=8)
    attendance: List[AttendanceMark]

    @field_validator("date")
    @classmethod
    def iso_date(cls, value: str) -> str:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).date().isoformat()
        except ValueError:
            raise ValueError("Date is required")

    @field_validator("attendance")
    @classmethod
    def one_mark_per_student(cls, value: List[AttendanceMark]) -> List[AttendanceMark]:
        seen = set()
        for mark in value:
            if mark.student_id in seen:
                raise ValueError(f"Student {mark.student_id} is marked more than once")
            seen.add(mark.student_id)
        return value


class AttendanceRecord(Record):
    student_id: str
    class_id: str
    subject_id: Optional[str] = None
    teacher_id: str
    date: str
    status: AttendanceStatus
    remarks: Optional[str] = None
    period: Optional[int] = None
    academic_year: str
    semester: Term


class AttendanceUpdate(BaseModel):
    status: Optional[AttendanceStatus] = None
    remarks: Optional[str] = None

    @field_validator("status")
    @classmethod
    def not_null(cls, value):
        return reject_null(value)
