from . import attendance, auth, classes, grades, reports, students, subjects, teachers

routers = [
    auth.router,
    students.router,
    teachers.router,
    classes.router,
    subjects.router,
    grades.router,
    attendance.router,
    reports.router,
]
