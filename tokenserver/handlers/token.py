"""Token endpoint handler: form decoding and transport evidence, then the pipeline."""

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.datastructures import UploadFile

from tokenserver.models.errors import ErrorDescription, TokenErrorCode
from tokenserver.models.requests import TokenRequest, TransportEvidence
from tokenserver.models.results import TokenResponse, grant_error
from tokenserver.services.response_composer import compose_error
from tokenserver.utils.logging import get_logger

logger = get_logger(__name__)

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"

# The only form field that may be sent more than once
RESOURCE_PARAMETER = "resource"


class MalformedTokenRequest(Exception):
    def __init__(self, description: str) -> None:
        self.description = description
        super().__init__(description)


def client_certificate(request: Request) -> str | None:
    """PEM of the leaf client certificate, when the server exposes the ASGI TLS extension."""
    tls = request.scope.get("extensions", {}).get("tls") or {}
    chain = tls.get("client_cert_chain") or []
    return chain[0] if chain else None


async def read_token_request(request: Request) -> TokenRequest:
    content_type = request.headers.get("content-type", "")
    if content_type.split(";")[0].strip().lower() != FORM_CONTENT_TYPE:
        raise MalformedTokenRequest(ErrorDescription.INVALID_CONTENT_TYPE)

    form = await request.form()
    parameters: dict[str, str] = {}
    resources: list[str] = []
    for name, value in form.multi_items():
        if isinstance(value, UploadFile):
            raise MalformedTokenRequest(ErrorDescription.INVALID_CONTENT_TYPE)
        if name == RESOURCE_PARAMETER:
            resources.append(value)
            continue
        if name in parameters:
            raise MalformedTokenRequest(ErrorDescription.REPEATED_PARAMETER)
        parameters[name] = value

    return TokenRequest(
        grant_type=parameters.get("grant_type") or None,
        client_id=parameters.get("client_id") or None,
        client_secret=parameters.get("client_secret") or None,
        scope=parameters.get("scope") or None,
        parameters=parameters,
        resources=tuple(resources),
    )


def _json(response: TokenResponse) -> JSONResponse:
    return JSONResponse(content=response.body, status_code=response.status_code, headers=response.headers)


async def token_endpoint(request: Request) -> JSONResponse:
    """POST handler for the token endpoint."""
    try:
        token_request = await read_token_request(request)
    except MalformedTokenRequest as e:
        logger.info("token_request_malformed", error_description=e.description)
        return _json(compose_error(grant_error(TokenErrorCode.INVALID_REQUEST, e.description)))

    evidence = TransportEvidence(
        authorization_header=request.headers.get("authorization"),
        client_certificate=client_certificate(request),
    )

    pipeline = request.app.state.token_server.pipeline
    return _json(await pipeline.process(token_request, evidence))
