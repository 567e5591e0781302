"""
The token request pipeline.

    client authentication -> grant_type checks -> scope parsing and validation
    -> grant validator -> custom token request validators -> token issuance
    -> response composition

The first failing stage ends the request. Nothing is issued or stored after a failure.
"""

import asyncio
from collections.abc import Sequence

from tokenserver.models.errors import CollaboratorError, ErrorDescription, TokenErrorCode
from tokenserver.models.requests import TokenRequest, TransportEvidence
from tokenserver.models.resources import ResolvedResources
from tokenserver.models.results import (
    ClientAuthenticationResult,
    GrantValidationError,
    GrantValidationSuccess,
    TokenResponse,
    grant_error,
)
from tokenserver.services import events
from tokenserver.services.dispatcher import GrantDispatcher
from tokenserver.services.events import EventCategory, EventService, TokenEvent
from tokenserver.services.response_composer import compose_error, compose_success
from tokenserver.services.token_issuer import TokenIssuer
from tokenserver.utils.logging import fingerprint, get_logger
from tokenserver.validation.client_authenticator import ClientAuthenticator
from tokenserver.validation.custom import CustomTokenRequestContext, CustomTokenRequestValidator
from tokenserver.validation.grants import GrantValidationContext
from tokenserver.validation.scopes import ScopeParser, ScopeValidator

logger = get_logger(__name__)


class TokenRequestPipeline:
    def __init__(
        self,
        authenticator: ClientAuthenticator,
        scope_parser: ScopeParser,
        scope_validator: ScopeValidator,
        dispatcher: GrantDispatcher,
        issuer: TokenIssuer,
        event_service: EventService,
        custom_validators: Sequence[CustomTokenRequestValidator] = (),
    ) -> None:
        self.authenticator = authenticator
        self.scope_parser = scope_parser
        self.scope_validator = scope_validator
        self.dispatcher = dispatcher
        self.issuer = issuer
        self.events = event_service
        self.custom_validators = list(custom_validators)

    async def process(self, request: TokenRequest, evidence: TransportEvidence) -> TokenResponse:
        """Run a token request to completion. Never raises for protocol or collaborator errors."""
        bound_logger = logger.bind(grant_type=request.grant_type)
        try:
            return await self._process(request, evidence, bound_logger)
        except CollaboratorError as e:
            bound_logger.error("token_request_collaborator_failed", error=str(e), exc_info=True)
            return await self._server_error(request)
        except Exception as e:
            bound_logger.error("token_request_unhandled_exception", error=str(e), exc_info=True)
            return await self._server_error(request)

    async def _process(self, request: TokenRequest, evidence: TransportEvidence, bound_logger) -> TokenResponse:
        auth = await self.authenticator.authenticate(request, evidence)
        if isinstance(auth, GrantValidationError):
            await self._raise(
                events.CLIENT_AUTHENTICATION_FAILURE,
                EventCategory.FAILURE,
                request,
                client_id=request.client_id,
                error=auth.error.value,
            )
            return compose_error(auth)

        client = auth.client
        bound_logger = bound_logger.bind(client_id=client.client_id)
        await self._raise(
            events.CLIENT_AUTHENTICATION_SUCCESS,
            EventCategory.SUCCESS,
            request,
            client_id=client.client_id,
            details={"credential_kind": auth.credential_kind},
        )

        if not request.grant_type:
            return await self._fail(
                request, auth, grant_error(TokenErrorCode.INVALID_REQUEST, ErrorDescription.MISSING_GRANT_TYPE)
            )

        validator = self.dispatcher.resolve(request.grant_type)
        if validator is None:
            return await self._fail(
                request,
                auth,
                grant_error(TokenErrorCode.UNSUPPORTED_GRANT_TYPE, ErrorDescription.UNSUPPORTED_GRANT_TYPE),
            )
        if not validator.is_allowed_for(auth):
            return await self._fail(
                request,
                auth,
                grant_error(TokenErrorCode.UNAUTHORIZED_CLIENT, ErrorDescription.UNAUTHORIZED_CLIENT),
            )

        parsed_scopes = self.scope_parser.parse(request.scope)
        resources: ResolvedResources | None = None
        policy = validator.scope_policy
        if policy.resolve:
            validated = await self.scope_validator.validate(
                client,
                parsed_scopes,
                request.resources,
                require_scope=policy.require_scope,
                apply_defaults=policy.apply_defaults,
                allow_identity_scopes=policy.allow_identity_scopes,
            )
            if isinstance(validated, GrantValidationError):
                return await self._fail(request, auth, validated)
            resources = validated

        context = GrantValidationContext(
            request=request,
            client_auth=auth,
            parsed_scopes=parsed_scopes,
            resources=resources,
            logger=bound_logger,
        )
        result = await self.dispatcher.dispatch(validator, context)
        if isinstance(result, GrantValidationError):
            return await self._fail(request, auth, result)

        granted = result.resources or resources or ResolvedResources()
        if not result.subject and (granted.identity_resources or granted.offline_access):
            return await self._fail(
                request,
                auth,
                grant_error(
                    TokenErrorCode.INVALID_SCOPE,
                    ErrorDescription.IDENTITY_SCOPE_WITHOUT_SUBJECT,
                    result.custom_response,
                ),
            )

        hooked = await self._run_custom_validators(request, auth, granted, result)
        if isinstance(hooked, GrantValidationError):
            return await self._fail(request, auth, hooked)
        result = hooked

        await self._raise(
            events.TOKEN_REQUEST_VALIDATED,
            EventCategory.INFORMATION,
            request,
            client_id=client.client_id,
            subject=result.subject,
            details={"scopes": granted.scope_values},
        )

        token = await self.issuer.issue(auth, result, granted)
        try:
            await self._raise(
                events.TOKEN_ISSUED_SUCCESS,
                EventCategory.SUCCESS,
                request,
                client_id=client.client_id,
                subject=result.subject,
                details={"scopes": granted.scope_values},
            )
            return compose_success(token, result.custom_response)
        except asyncio.CancelledError:
            # The refresh token is already stored; make sure it can be traced
            bound_logger.warning(
                "token_response_cancelled_after_issuance", refresh_token=fingerprint(token.refresh_token)
            )
            raise

    async def _run_custom_validators(
        self,
        request: TokenRequest,
        auth: ClientAuthenticationResult,
        resources: ResolvedResources,
        result: GrantValidationSuccess,
    ) -> GrantValidationSuccess | GrantValidationError:
        for custom_validator in self.custom_validators:
            outcome = await custom_validator.validate(
                CustomTokenRequestContext(request=request, client_auth=auth, resources=resources, result=result)
            )
            if isinstance(outcome, GrantValidationError):
                # Keep what earlier stages added to the response; the hook's own values win
                return outcome.model_copy(
                    update={"custom_response": {**result.custom_response, **outcome.custom_response}}
                )
            result = outcome
        return result

    async def _fail(
        self, request: TokenRequest, auth: ClientAuthenticationResult, error: GrantValidationError
    ) -> TokenResponse:
        await self._raise(
            events.TOKEN_REQUEST_FAILURE,
            EventCategory.FAILURE,
            request,
            client_id=auth.client.client_id,
            error=error.error.value,
            details={"error_description": error.error_description},
        )
        return compose_error(error)

    async def _server_error(self, request: TokenRequest) -> TokenResponse:
        await self._raise(
            events.UNHANDLED_ERROR,
            EventCategory.ERROR,
            request,
            client_id=request.client_id,
            error=TokenErrorCode.SERVER_ERROR.value,
        )
        return compose_error(grant_error(TokenErrorCode.SERVER_ERROR, ErrorDescription.SERVER_ERROR))

    async def _raise(
        self,
        name: str,
        category: EventCategory,
        request: TokenRequest,
        client_id: str | None = None,
        subject: str | None = None,
        error: str | None = None,
        details: dict | None = None,
    ) -> None:
        await self.events.raise_event(
            TokenEvent(
                name=name,
                category=category,
                client_id=client_id,
                grant_type=request.grant_type,
                subject=subject,
                error=error,
                details=details or {},
            )
        )
