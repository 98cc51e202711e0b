"""Booking API router: devices, jobs and assignments."""

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from rentalcore.audit.events import (
    AuditEventType,
    DeviceAssignmentChange,
    JobRevenueSnapshot,
)
from rentalcore.booking.schemas import (
    AssignDeviceRequest,
    AssignmentResponse,
    BulkAssignmentResponse,
    BulkAssignRequest,
    BulkItemResponse,
    CurrentAssignmentResponse,
    DeviceCreate,
    DeviceResponse,
    DeviceStatusUpdate,
    DiscountUpdate,
    JobCreate,
    JobDeviceResponse,
    JobResponse,
    JobStatusUpdate,
    ProductCreate,
    ProductResponse,
)
from rentalcore.common.exceptions import (
    AssignmentConflictError,
    NotFoundError,
    ValidationError,
)
from rentalcore.common.security import (
    actor_from_request,
    context_from_request,
    require_api_key,
)

router = APIRouter()


def _get_service():
    from rentalcore.deps import get_booking_service
    return get_booking_service()


def _get_db():
    from rentalcore.deps import get_db
    return get_db()


def _get_audit():
    from rentalcore.deps import get_audit_logger
    return get_audit_logger()


def _conflict_detail(e: ValidationError) -> dict:
    detail = {"message": e.message, "code": e.code}
    if isinstance(e, AssignmentConflictError):
        detail["conflicting_job_id"] = e.conflicting_job_id
        detail["start_date"] = e.start_date.isoformat() if e.start_date else None
        detail["end_date"] = e.end_date.isoformat() if e.end_date else None
    return detail


# ── Catalogue ──

@router.post("/products", response_model=ProductResponse, status_code=201)
async def create_product(body: ProductCreate, _=Depends(require_api_key)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        product = await svc.create_product(session, body.name, body.item_cost_per_day)
        return ProductResponse.model_validate(product)


@router.post("/devices", response_model=DeviceResponse, status_code=201)
async def create_device(body: DeviceCreate, _=Depends(require_api_key)):
    svc = _get_service()
    db = _get_db()
    try:
        async with db.get_session() as session:
            device = await svc.create_device(
                session, body.id,
                product_id=body.product_id,
                serial_number=body.serial_number,
                status=body.status,
            )
            return DeviceResponse.model_validate(device)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)


@router.get("/devices/available", response_model=list[DeviceResponse])
async def available_devices_on(day: date = Query(...), _=Depends(require_api_key)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        devices = await svc.available_devices_on(session, day)
        return [DeviceResponse.model_validate(d) for d in devices]


@router.patch("/devices/{device_id}/status", response_model=DeviceResponse)
async def set_device_status(
    device_id: str, body: DeviceStatusUpdate, _=Depends(require_api_key),
):
    svc = _get_service()
    db = _get_db()
    try:
        async with db.get_session() as session:
            device = await svc.set_device_status(session, device_id, body.status)
            return DeviceResponse.model_validate(device)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)


@router.get(
    "/devices/{device_id}/current-job", response_model=CurrentAssignmentResponse,
)
async def current_job_for_device(device_id: str, _=Depends(require_api_key)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        job_id = await svc.is_device_currently_assigned(session, device_id)
    return CurrentAssignmentResponse(
        device_id=device_id, assigned=job_id is not None, job_id=job_id,
    )


# ── Jobs ──

@router.post("/jobs", response_model=JobResponse, status_code=201)
async def create_job(body: JobCreate, _=Depends(require_api_key)):
    svc = _get_service()
    db = _get_db()
    try:
        async with db.get_session() as session:
            job = await svc.create_job(
                session,
                customer=body.customer,
                start_date=body.start_date,
                end_date=body.end_date,
                discount=body.discount,
                discount_type=body.discount_type,
                status=body.status,
                description=body.description,
            )
            return JobResponse.model_validate(job)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)


@router.post("/jobs/free-cancelled")
async def free_cancelled_jobs(request: Request, _=Depends(require_api_key)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        freed = await svc.free_devices_from_cancelled_jobs(session)

    if freed:
        await _get_audit().record_system_event(
            "Devices freed from cancelled jobs",
            {"device_ids": freed},
            actor=actor_from_request(request),
            request=context_from_request(request),
        )
    return {"freed_devices": freed}


@router.get("/jobs/{job_id}", response_model=JobResponse)
async def get_job(job_id: str, _=Depends(require_api_key)):
    svc = _get_service()
    db = _get_db()
    try:
        async with db.get_session() as session:
            return JobResponse.model_validate(await svc.get_job(session, job_id))
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)


@router.patch("/jobs/{job_id}/status", response_model=JobResponse)
async def update_job_status(
    job_id: str, body: JobStatusUpdate, _=Depends(require_api_key),
):
    svc = _get_service()
    db = _get_db()
    try:
        async with db.get_session() as session:
            job = await svc.update_job_status(session, job_id, body.status)
            return JobResponse.model_validate(job)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)


@router.patch("/jobs/{job_id}/discount", response_model=JobResponse)
async def update_discount(
    job_id: str, body: DiscountUpdate, request: Request, _=Depends(require_api_key),
):
    svc = _get_service()
    db = _get_db()
    try:
        async with db.get_session() as session:
            job = await svc.update_discount(
                session, job_id, body.discount, body.discount_type,
            )
            response = JobResponse.model_validate(job)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)

    await _get_audit().record(
        AuditEventType.UPDATE, "job", job_id, actor_from_request(request),
        "Job discount updated",
        new_value=JobRevenueSnapshot(
            job_id=job_id,
            revenue=response.revenue,
            final_revenue=response.final_revenue,
            discount=response.discount,
            discount_type=response.discount_type,
        ),
        request=context_from_request(request),
    )
    return response


@router.get("/jobs/{job_id}/devices", response_model=list[JobDeviceResponse])
async def list_job_devices(job_id: str, _=Depends(require_api_key)):
    svc = _get_service()
    db = _get_db()
    try:
        async with db.get_session() as session:
            assignments = await svc.list_job_devices(session, job_id)
            return [JobDeviceResponse.model_validate(a) for a in assignments]
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)


@router.get("/jobs/{job_id}/available-devices", response_model=list[DeviceResponse])
async def available_devices_for_job(job_id: str, _=Depends(require_api_key)):
    svc = _get_service()
    db = _get_db()
    try:
        async with db.get_session() as session:
            devices = await svc.available_devices_for_job(session, job_id)
            return [DeviceResponse.model_validate(d) for d in devices]
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)


# ── Assignment ──

@router.post(
    "/jobs/{job_id}/devices", response_model=AssignmentResponse, status_code=201,
)
async def assign_device(
    job_id: str, body: AssignDeviceRequest, request: Request, _=Depends(require_api_key),
):
    svc = _get_service()
    db = _get_db()
    try:
        async with db.get_session() as session:
            result = await svc.assign_device(
                session, job_id, body.device_id, body.custom_price,
            )
            response = AssignmentResponse(
                assignment=JobDeviceResponse.model_validate(result.assignment),
                job=JobResponse.model_validate(result.job),
            )
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except ValidationError as e:
        raise HTTPException(status_code=409, detail=_conflict_detail(e))

    await _get_audit().record(
        AuditEventType.CREATE, "job_device", f"{job_id}:{body.device_id}",
        actor_from_request(request), "Device assigned to job",
        new_value=DeviceAssignmentChange(
            job_id=job_id,
            device_id=body.device_id,
            custom_price=response.assignment.custom_price,
            start_date=response.job.start_date,
            end_date=response.job.end_date,
            revenue=response.job.revenue,
            final_revenue=response.job.final_revenue,
        ),
        request=context_from_request(request),
    )
    return response


@router.post("/jobs/{job_id}/devices/bulk", response_model=BulkAssignmentResponse)
async def bulk_assign_devices(
    job_id: str, body: BulkAssignRequest, request: Request, _=Depends(require_api_key),
):
    svc = _get_service()
    db = _get_db()
    try:
        async with db.get_session() as session:
            result = await svc.bulk_assign(
                session, job_id, body.identifiers, body.custom_price,
            )
            response = BulkAssignmentResponse(
                job=JobResponse.model_validate(result.job),
                items=[BulkItemResponse.model_validate(i) for i in result.items],
            )
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)

    audit = _get_audit()
    actor = actor_from_request(request)
    context = context_from_request(request)
    for item in response.items:
        if not item.success:
            continue
        await audit.record(
            AuditEventType.CREATE, "job_device", f"{job_id}:{item.device_id}",
            actor, "Device assigned to job (bulk)",
            new_value=DeviceAssignmentChange(
                job_id=job_id,
                device_id=item.device_id,
                custom_price=body.custom_price if body.custom_price and body.custom_price > 0 else None,
                start_date=response.job.start_date,
                end_date=response.job.end_date,
            ),
            request=context,
        )
    return response


@router.delete("/jobs/{job_id}/devices/{device_id}", response_model=JobResponse)
async def unassign_device(
    job_id: str,
    device_id: str,
    request: Request,
    free_device: bool = Query(True),
    _=Depends(require_api_key),
):
    svc = _get_service()
    db = _get_db()
    try:
        async with db.get_session() as session:
            if free_device:
                job = await svc.unassign_device(session, job_id, device_id)
            else:
                job = await svc.remove_device(session, job_id, device_id)
            response = JobResponse.model_validate(job)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)

    await _get_audit().record(
        AuditEventType.DELETE, "job_device", f"{job_id}:{device_id}",
        actor_from_request(request), "Device removed from job",
        old_value=DeviceAssignmentChange(job_id=job_id, device_id=device_id),
        new_value=JobRevenueSnapshot(
            job_id=job_id,
            revenue=response.revenue,
            final_revenue=response.final_revenue,
            discount=response.discount,
            discount_type=response.discount_type,
        ),
        request=context_from_request(request),
    )
    return response


@router.post(
    "/jobs/{job_id}/devices/{device_id}/checkout", response_model=JobDeviceResponse,
)
async def check_out_device(
    job_id: str, device_id: str, request: Request, _=Depends(require_api_key),
):
    svc = _get_service()
    db = _get_db()
    try:
        async with db.get_session() as session:
            assignment = await svc.check_out_device(session, job_id, device_id)
            response = JobDeviceResponse.model_validate(assignment)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except ValidationError as e:
        raise HTTPException(status_code=409, detail=e.message)

    await _get_audit().record(
        AuditEventType.UPDATE, "device", device_id, actor_from_request(request),
        "Device checked out",
        old_value={"status": "free"}, new_value={"status": "checked_out", "job_id": job_id},
        request=context_from_request(request),
    )
    return response


@router.post(
    "/jobs/{job_id}/devices/{device_id}/return", response_model=JobDeviceResponse,
)
async def return_device(
    job_id: str, device_id: str, request: Request, _=Depends(require_api_key),
):
    svc = _get_service()
    db = _get_db()
    try:
        async with db.get_session() as session:
            assignment = await svc.return_device(session, job_id, device_id)
            response = JobDeviceResponse.model_validate(assignment)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except ValidationError as e:
        raise HTTPException(status_code=409, detail=e.message)

    await _get_audit().record(
        AuditEventType.UPDATE, "device", device_id, actor_from_request(request),
        "Device returned",
        new_value={"status": "free", "job_id": job_id, "state": "returned"},
        request=context_from_request(request),
    )
    return response
