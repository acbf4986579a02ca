"""FastAPI dependencies resolving per-app components from ``app.state``."""

from typing import Annotated

from fastapi import Depends, Request

from tendergate.app.core.config import Settings
from tendergate.app.exceptions import UpstreamNotConfigured
from tendergate.app.services.pipeline import ProtectionPipeline
from tendergate.app.services.security_gate import GateResult, SecurityGate


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_gate(request: Request) -> SecurityGate:
    return request.app.state.gate


def get_pipeline(request: Request) -> ProtectionPipeline:
    """Return the app's pipeline.

    Raises:
        UpstreamNotConfigured: If no provider was configured at startup
    """
    pipeline = request.app.state.pipeline
    if pipeline is None:
        raise UpstreamNotConfigured()
    return pipeline


def request_target(request: Request) -> str:
    """Path plus query string, as validated by the security gate."""
    target = request.url.path
    if request.url.query:
        target = f"{target}?{request.url.query}"
    return target


def run_security_gate(
    request: Request,
    gate: Annotated[SecurityGate, Depends(get_gate)],
) -> GateResult:
    """Route-level gate check; raises ``RequestBlocked`` on denial."""
    client_host = request.client.host if request.client else None
    result = gate.check(request.method, request_target(request), request.headers, client_host)
    request.state.client_ip = result.ip
    return result


SettingsDep = Annotated[Settings, Depends(get_settings)]
GateDep = Annotated[GateResult, Depends(run_security_gate)]
