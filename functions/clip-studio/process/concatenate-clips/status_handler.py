import json
from typing import Any, Dict

from aws_lambda_powertools import Logger

import constants
from common_response_utils import (
    bad_request_response,
    conflict_response,
    get_request_origin,
    method_not_allowed_response,
    not_found_response,
    options_response,
    parse_json_body,
    server_error_response,
    success_response,
)
from config import get_config
from dynamodb_helper import DynamoDBHelper
from exceptions import ClipStudioError
from job_store import JobStore
from schemas import JobStatus, ProcessingJob

logger = Logger(service=f"{constants.STATUS_SERVICE_NAME}-api")

_job_store = None


def get_job_store() -> JobStore:
    global _job_store
    if _job_store is None:
        config = get_config()
        _job_store = JobStore(DynamoDBHelper(config.jobs_table, region=config.aws_region))
    return _job_store


def job_view(job: ProcessingJob) -> Dict[str, Any]:
    """What the client gets to see. The link only appears on a completed job."""
    view = {
        "job_id": job.job_id,
        "status": job.status.value,
        "phase": job.phase.value,
        "progress": job.progress,
        "step_label": constants.PHASE_LABELS.get(job.phase.value, ""),
        "strategy": job.strategy.value if job.strategy else None,
        "degraded": job.degraded,
        "cancel_requested": job.cancel_requested,
        "updated_at": job.updated_at,
    }
    if job.status == JobStatus.COMPLETED:
        view["public_url"] = job.public_url
        view["filename"] = job.filename
    if job.status == JobStatus.FAILED:
        view["error"] = job.error
    return view


def _http_method(event: Dict[str, Any]) -> str:
    method = event.get("httpMethod")
    if not method:
        method = (event.get("requestContext") or {}).get("http", {}).get("method", "")
    return (method or "").upper()


def _get_status(event, origin):
    params = event.get("queryStringParameters") or {}
    job_id = params.get("job_id") or (event.get("pathParameters") or {}).get("job_id")
    if not job_id:
        return bad_request_response("Job ID is required.", "Missing 'job_id' query parameter", origin=origin)

    job = get_job_store().load(job_id)
    if job is None:
        return not_found_response("Job not found.", f"No job with id {job_id}", origin=origin)

    return success_response(data=job_view(job), message="Job status retrieved", origin=origin)


def _cancel(event, origin):
    try:
        body = parse_json_body(event)
    except json.JSONDecodeError as e:
        return bad_request_response("Request body must be valid JSON.", str(e), origin=origin)

    job_id = body.get("job_id") or body.get("jobId")
    action = body.get("action")
    if not job_id:
        return bad_request_response("Job ID is required.", "Missing 'job_id' in body", origin=origin)
    if action != "cancel":
        return bad_request_response("Unsupported action.", f"Unknown action: {action}", origin=origin)

    job = get_job_store().request_cancellation(job_id)
    if job is None:
        return not_found_response("Job not found.", f"No job with id {job_id}", origin=origin)
    if job.is_terminal:
        return conflict_response(
            "This job has already finished.",
            f"Job {job_id} is {job.status.value}",
            origin=origin,
        )

    return success_response(data=job_view(job), message="Cancellation requested", origin=origin)


def lambda_handler(event, context):
    origin = get_request_origin(event)
    method = _http_method(event)

    try:
        if method == "OPTIONS":
            return options_response(origin)
        if method == "GET":
            return _get_status(event, origin)
        if method == "POST":
            return _cancel(event, origin)
        return method_not_allowed_response(method, origin=origin)

    except ClipStudioError as e:
        logger.error(f"Job status request failed: {e}")
        return server_error_response("Could not read the job status. Please try again.", exception=e, origin=origin)
    except Exception as e:
        logger.exception("Unexpected error in job status handler")
        return server_error_response(exception=e, origin=origin)
