import os
import json
import asyncio

import httpx
from aws_lambda_powertools import Logger

import constants
from config import get_config
from exceptions import ConfigurationError, ValidationError
from orchestrator import ExportOrchestrator
from schemas import parse_export_request

logger = Logger(service=f"{constants.SERVICE_NAME}-pipeline-step")

PAYLOAD_JSON = os.environ.get('PAYLOAD_JSON')


def _parse_payload(event):
    body = event
    if isinstance(body, dict):
        return body
    if isinstance(body, str):
        try:
            return json.loads(body)
        except json.JSONDecodeError:
            return body
    return {}


async def main(payload_json=None):
    job_id = None
    payload_json = payload_json if payload_json is not None else PAYLOAD_JSON

    try:
        if not payload_json:
            raise ConfigurationError("Missing required environment variable PAYLOAD_JSON")

        payload = _parse_payload(payload_json)
        if not isinstance(payload, dict):
            raise ValidationError("PAYLOAD_JSON must be a JSON object")

        job_id = payload.get("job_id") or payload.get("jobId")
        config = get_config()

        async with httpx.AsyncClient(timeout=config.download_timeout_seconds, follow_redirects=True) as http:
            orchestrator = ExportOrchestrator.from_config(config, http)

            # ==============================================================================
            # BRANCH: CLEANUP REQUEST
            # ==============================================================================
            if payload.get("action") == "cleanup":
                if not job_id:
                    raise ValidationError("Missing 'job_id' in PAYLOAD_JSON")

                logger.info("=" * 60)
                logger.info("🧹 CLEANUP REQUEST RECEIVED")
                logger.info("=" * 60)
                logger.info(f"Job: {job_id}")

                report = await orchestrator.cleanup_only(job_id)
                if report is not None:
                    logger.info(
                        f"✅ Cleanup finished: {len(report.deleted)} deleted, {len(report.failed)} failed"
                    )
                return report

            # ==============================================================================
            # STANDARD FLOW: EXPORT
            # ==============================================================================
            request = parse_export_request(payload)

            logger.info("=" * 60)
            logger.info("🚀 STARTING CONCATENATION PIPELINE STEP")
            logger.info("=" * 60)
            logger.info(f"Job ID: {request.job_id}")
            logger.info(f"Clips: {len(request.selected_clip_ids)}, target {request.target_duration}s")
            logger.info(f"Platform: {request.platform}, language: {request.language}")
            logger.info("=" * 60)

            job = await orchestrator.run(request)

            logger.info(f"Concatenation step completed successfully with {job.strategy.value}!")
            if job.degraded:
                logger.warning("Result was produced by binary concatenation and may not play everywhere.")
            return job

    except Exception as e:
        logger.error(f"Pipeline failed for job {job_id}: {e}", exc_info=True)
        raise


if __name__ == '__main__':
    asyncio.run(main())
