"""
GradeLedger - Course Routes

The slice of course and enrollment handling that exercises the ownership
and enrollment predicates:
- POST /courses                           - Create course (admin)
- POST /courses/{course_id}/enrollments   - Enroll a student (admin)
- GET  /courses/{course_id}/roster        - Roster (course lecturer or admin)
- GET  /courses/{course_id}               - Course detail (enrolled students, staff)
- GET  /students/{student_id}/enrollments - A student's own enrollments

Mutations here happen outside the lifecycle manager, so they call the audit
recorder directly.
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Path, Request, status
from pydantic import BaseModel, Field

from backend.audit.models import AuditAction
from backend.auth.errors import NotFound, ValidationFailed
from backend.auth.models import Course, Enrollment, EnrollmentStatus, Role
from backend.auth.principal import SessionPrincipal
from backend.gateway.dependencies import course_owner, enrolled_in, get_origin, owner_of, require
from backend.gateway.rbac import Permission, RoleMembership


router = APIRouter(tags=["courses"])


class CourseCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    code: str = Field(..., min_length=1, max_length=20)
    description: Optional[str] = None
    lecturer_id: Optional[UUID] = None


class CourseResponse(BaseModel):
    id: UUID
    name: str
    code: str
    description: Optional[str] = None
    lecturer_id: Optional[UUID] = None
    is_active: bool

    class Config:
        from_attributes = True


class EnrollmentRequest(BaseModel):
    student_id: UUID


class EnrollmentResponse(BaseModel):
    id: UUID
    student_id: UUID
    course_id: UUID
    status: EnrollmentStatus
    enrolled_at: datetime

    class Config:
        from_attributes = True


class RosterResponse(BaseModel):
    course_id: UUID
    enrollments: List[EnrollmentResponse]
    total: int


async def _require_course(request: Request, course_id: UUID) -> Course:
    course = await request.app.state.resources.find_course_by_id(course_id)
    if course is None:
        raise NotFound("course", course_id)
    return course


@router.post("/courses", response_model=CourseResponse, status_code=status.HTTP_201_CREATED)
async def create_course(
    request: Request,
    body: CourseCreateRequest,
    principal: SessionPrincipal = Depends(require(RoleMembership.for_permission(Permission.CREATE_COURSE))),
):
    state = request.app.state
    if body.lecturer_id is not None:
        lecturer = await state.users.find_by_id(body.lecturer_id)
        if lecturer is None or lecturer.role != Role.LECTURER:
            raise ValidationFailed("lecturer_id must reference a lecturer")

    course = await state.resources.create_course(Course(
        name=body.name.strip(),
        code=body.code.strip().upper(),
        description=body.description,
        lecturer_id=body.lecturer_id,
    ))
    state.recorder.record(
        principal.id,
        AuditAction.COURSE_CREATED,
        table_name="courses",
        record_id=course.id,
        new_values={"code": course.code, "lecturer_id": course.lecturer_id},
        origin=get_origin(request),
    )
    return CourseResponse.model_validate(course)


@router.post(
    "/courses/{course_id}/enrollments",
    response_model=EnrollmentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def enroll_student(
    request: Request,
    body: EnrollmentRequest,
    course_id: UUID = Path(...),
    principal: SessionPrincipal = Depends(require(RoleMembership.for_permission(Permission.MANAGE_ENROLLMENTS))),
):
    state = request.app.state
    await _require_course(request, course_id)
    student = await state.users.find_by_id(body.student_id)
    if student is None or student.role != Role.STUDENT:
        raise ValidationFailed("student_id must reference a student")

    enrollment = await state.resources.enroll_student(
        Enrollment(student_id=student.id, course_id=course_id)
    )
    state.recorder.record(
        principal.id,
        AuditAction.STUDENT_ENROLLED,
        table_name="enrollments",
        record_id=enrollment.id,
        new_values={"student_id": student.id, "course_id": course_id},
        origin=get_origin(request),
    )
    return EnrollmentResponse.model_validate(enrollment)


@router.get("/courses/{course_id}/roster", response_model=RosterResponse)
async def course_roster(
    request: Request,
    course_id: UUID = Path(...),
    principal: SessionPrincipal = Depends(require(
        RoleMembership.for_permission(Permission.VIEW_ROSTER),
        course_owner("course_id"),
    )),
):
    await _require_course(request, course_id)
    enrollments = await request.app.state.resources.list_course_enrollments(course_id)
    return RosterResponse(
        course_id=course_id,
        enrollments=[EnrollmentResponse.model_validate(e) for e in enrollments],
        total=len(enrollments),
    )


@router.get("/courses/{course_id}", response_model=CourseResponse)
async def get_course(
    request: Request,
    course_id: UUID = Path(...),
    principal: SessionPrincipal = Depends(require(
        RoleMembership.for_permission(Permission.VIEW_COURSE),
        enrolled_in("course_id"),
    )),
):
    course = await _require_course(request, course_id)
    return CourseResponse.model_validate(course)


@router.get("/students/{student_id}/enrollments", response_model=List[EnrollmentResponse])
async def student_enrollments(
    request: Request,
    student_id: UUID = Path(...),
    principal: SessionPrincipal = Depends(require(
        RoleMembership.for_permission(Permission.VIEW_OWN_RECORDS),
        owner_of("student_id"),
    )),
):
    enrollments = await request.app.state.resources.list_active_enrollments_for_student(student_id)
    return [EnrollmentResponse.model_validate(e) for e in enrollments]
