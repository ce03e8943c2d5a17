"""
Background service: the boundary between the attestation core and the
page/UI layers.

Messages:
    POST /verify-context        VERIFY_CONTEXT -> {success, token?, error?}
    POST /navigation-change     NAVIGATION_CHANGE{inStore} -> start/stop
    GET  /status/{context_id}   last status event
    GET  /token/{context_id}    last token event
    GET  /device                device key id and public key
    POST /device/enroll         enrollment artifact for a new device
    POST /device/revoke         destructive; requires {"confirm": true}
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException

from . import config
from .errors import EnrollmentError, RevocationError, SigningError, ValidationError
from .logging_config import audit_log, configure_logging
from .models import (
    EnrollDeviceRequest,
    NavigationChange,
    RevokeConfirmation,
    VerifyContextRequest,
)
from .runtime import AttestationRuntime
from .security import validate_site_url

logger = logging.getLogger(__name__)

RUNTIME = None


def get_runtime() -> AttestationRuntime:
    if RUNTIME is None:
        raise HTTPException(503, "RUNTIME_NOT_READY")
    return RUNTIME


def _checked_url(url: str) -> str:
    try:
        return validate_site_url(url)
    except ValidationError as e:
        raise HTTPException(422, str(e))


@asynccontextmanager
async def lifespan(_app: FastAPI):
    global RUNTIME
    if RUNTIME is None:
        configure_logging(config.LOG_LEVEL, config.LOG_JSON)
        RUNTIME = AttestationRuntime.from_config()
        for name, ok in config.validate_config().items():
            if not ok:
                logger.warning("Configured path for %s does not exist", name)
    await RUNTIME.identity.ensure_key_pair()
    yield
    RUNTIME.close()


app = FastAPI(title="secure-context attestation service", lifespan=lifespan)


@app.post("/verify-context")
async def verify_context(req: VerifyContextRequest):
    runtime = get_runtime()
    response = await runtime.attestor.verify_context(_checked_url(req.url))
    return response.to_wire()


@app.post("/navigation-change")
async def navigation_change(req: NavigationChange):
    runtime = get_runtime()
    url = _checked_url(req.url)
    loop = runtime.loop_for(req.context_id)

    in_store = req.in_store
    if in_store is None:
        site = runtime.site_for(url)
        in_store = site is not None and site.is_store_page(url)

    logger.info("Navigation in context %s: in_store=%s", req.context_id, in_store)
    if in_store:
        loop.start(url)
    else:
        loop.stop()
    return {"contextId": req.context_id, "inStore": in_store, "status": loop.state.status.value}


@app.get("/status/{context_id}")
def status(context_id: str):
    loop = get_runtime().get_loop(context_id)
    if loop is None:
        return {"contextId": context_id, "status": "inactive", "consistencyScore": 0.0,
                "reason": None, "failureKind": None, "timestamp": None}
    return loop.last_status.to_dict()


@app.get("/token/{context_id}")
def token(context_id: str):
    loop = get_runtime().get_loop(context_id)
    if loop is None or loop.active_token is None:
        return {"contextId": context_id, "token": None}
    return {"contextId": context_id, "token": loop.active_token.to_payload().to_wire()}


@app.get("/device")
def device():
    identity = get_runtime().identity
    try:
        return {"kid": identity.kid, "publicKey": identity.public_key_hex()}
    except SigningError:
        raise HTTPException(404, "NO_DEVICE_KEY")


@app.post("/device/enroll")
async def enroll(req: EnrollDeviceRequest):
    identity = get_runtime().identity
    try:
        enrollment = await identity.enroll(req.owner_approval_token)
    except SigningError:
        raise HTTPException(409, "NO_DEVICE_KEY")
    except ValidationError as e:
        raise HTTPException(422, str(e))
    except EnrollmentError as e:
        raise HTTPException(502, str(e))
    return enrollment.to_wire()


@app.post("/device/revoke")
async def revoke(req: RevokeConfirmation):
    identity = get_runtime().identity
    if not req.confirm:
        audit_log.security_event("revocation_unconfirmed", severity="low")
        raise HTTPException(400, "CONFIRMATION_REQUIRED")
    try:
        await identity.revoke(confirm=True)
    except SigningError:
        raise HTTPException(409, "NO_DEVICE_KEY")
    except RevocationError as e:
        raise HTTPException(502, str(e))
    return {"revoked": True}
