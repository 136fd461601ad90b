"""
CodeGateway: the single entry point that turns model-authored code into an
ExecutionResult.

One execution walks IDLE -> VALIDATING_CREDENTIAL -> [REFRESHING_CREDENTIAL
-> VALIDATING_CREDENTIAL] -> PREFLIGHTING_CODE -> EXECUTING -> SUCCEEDED or
FAILED. Executions on one gateway are serialized, so at most one credential
validation or refresh is in flight and the session record has one writer.
"""
import asyncio
import json
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from codegate.auth.store import SessionStore
from codegate.auth.token_manager import TokenLifecycleManager
from codegate.capabilities import CallQuota, CapabilitySurface, ResponseSanitizer
from codegate.classifier import classify_error, classify_success
from codegate.client.mail import MailApiClient, OAuthClient
from codegate.config.gateway import GatewayConfig
from codegate.exceptions import CodegateError, SessionExpiredError
from codegate.observability import ExecutionTimer
from codegate.preflight import extract_api_paths, preflight
from codegate.sandbox.executor import SandboxExecutor
from codegate.types import (
    AccountToken,
    ExecutionRequest,
    ExecutionResult,
    ExecutionState,
    Failure,
    Session,
)

logger = logging.getLogger(__name__)

EventSink = Callable[[Dict[str, Any]], None]

CODE_PREVIEW_CHARS = 300
RESULT_PREVIEW_CHARS = 200
ERROR_PREVIEW_CHARS = 150


class CodeGateway:
    """Runs model-authored scripts against the mail API on behalf of one user.

    Args:
        store: Where the user's sessions live.
        account_ids: Accounts scripts may use, first one is the default.
            Defaults to every account in the store.
        config: Policy knobs; see GatewayConfig.
        event_sink: Optional callable receiving each structured event.
        session_id: Names this gateway's units in logs.

    Example:
        gateway = CodeGateway(InMemorySessionStore([session]))
        result = await gateway.execute("return await read('/profile')", "check profile")
    """

    def __init__(
        self,
        store: SessionStore,
        account_ids: Optional[List[str]] = None,
        config: Optional[GatewayConfig] = None,
        event_sink: Optional[EventSink] = None,
        session_id: str = "default",
        api_client: Optional[MailApiClient] = None,
        token_manager: Optional[TokenLifecycleManager] = None,
        executor: Optional[SandboxExecutor] = None,
    ):
        self.config = config or GatewayConfig()
        self.store = store
        self.account_ids = list(account_ids) if account_ids else None
        self.event_sink = event_sink
        self.session_id = session_id

        self.api_client = api_client or MailApiClient(
            self.config.api_base,
            timeout=self.config.request_timeout,
            error_excerpt_chars=self.config.error_excerpt_chars,
        )
        self.token_manager = token_manager or TokenLifecycleManager(
            store,
            self.api_client,
            OAuthClient(self.config.token_endpoint, timeout=self.config.request_timeout),
            probe_path=self.config.probe_path,
        )
        self.token_manager.on_refresh_start = self._on_refresh_start
        self.token_manager.on_refresh = self._on_refresh
        self.executor = executor or SandboxExecutor(self.config.sandbox)
        self.sanitizer = ResponseSanitizer.from_config(self.config)

        self.state = ExecutionState.IDLE
        self.state_history: List[ExecutionState] = [ExecutionState.IDLE]
        self._lock = asyncio.Lock()

    def _transition(self, state: ExecutionState) -> None:
        logger.debug(f"{self.state.value} -> {state.value}")
        self.state = state
        self.state_history.append(state)

    def _emit(self, event: str, **fields) -> None:
        payload = {"event": event, "session_id": self.session_id, **fields}
        logger.info(event, extra={"codegate_event": payload})
        if self.event_sink is None:
            return
        try:
            self.event_sink(payload)
        except Exception as e:
            logger.warning(f"Event sink failed on {event}: {e}")

    def _on_refresh_start(self, session: Session) -> None:
        self._transition(ExecutionState.REFRESHING_CREDENTIAL)

    def _on_refresh(self, session: Session) -> None:
        self._emit("token_refreshed", account=session.account_id)
        self._transition(ExecutionState.VALIDATING_CREDENTIAL)

    def _load_sessions(self) -> List[Session]:
        ids = self.account_ids or self.store.account_ids()
        sessions = []
        for account_id in ids:
            session = self.store.get(account_id)
            if session is None:
                logger.warning(f"No stored session for {account_id}, skipping")
                continue
            sessions.append(session)
        return sessions

    def _validate_accounts(self) -> List[AccountToken]:
        sessions = self._load_sessions()
        if not sessions:
            raise SessionExpiredError("No connected mail account. Please connect an account.")
        tokens, failures = self.token_manager.validate_all(sessions)
        if not tokens:
            raise failures[0]
        return tokens

    async def execute(self, code: str, intent: str = "") -> ExecutionResult:
        """Validate credentials, preflight the code, run it and classify the outcome.

        Never raises for failures inside the pipeline; they come back as a
        Failure with one of the four error kinds.
        """
        request = ExecutionRequest(code=code or "", intent=intent or "")
        async with self._lock:
            self.state_history = []
            self._transition(ExecutionState.IDLE)
            with ExecutionTimer() as timer:
                result = await self._execute(request, timer)
                if result.ok:
                    timer.outcome = "success"
                elif timer.outcome == "success":
                    timer.outcome = result.kind.value
            self._transition(
                ExecutionState.SUCCEEDED if result.ok else ExecutionState.FAILED
            )
            return result

    async def _execute(self, request: ExecutionRequest, timer: ExecutionTimer) -> ExecutionResult:
        loop = asyncio.get_running_loop()

        self._transition(ExecutionState.VALIDATING_CREDENTIAL)
        try:
            # A refresh that has started must finish even if the caller gives up
            accounts = await asyncio.shield(loop.run_in_executor(None, self._validate_accounts))
        except CodegateError as e:
            logger.warning(f"Credential validation failed: {e}")
            return classify_error(e)
        except Exception as e:
            logger.exception("Unexpected error while validating credentials")
            return classify_error(e)

        self._transition(ExecutionState.PREFLIGHTING_CODE)
        try:
            code = preflight(request.code)
        except CodegateError as e:
            timer.outcome = "preflight_rejected"
            self._emit(
                "preflight_rejected",
                intent=request.intent,
                reason=e.message,
                code_preview=request.code[:CODE_PREVIEW_CHARS],
            )
            return classify_error(e)

        self._transition(ExecutionState.EXECUTING)
        api_paths = extract_api_paths(request.code)
        quota = CallQuota(self.config.max_calls)
        surface = CapabilitySurface(
            self.api_client,
            accounts,
            quota,
            self.sanitizer,
            list_params=self.config.list_params,
        )
        self._emit(
            "execution_started",
            intent=request.intent,
            api_paths=api_paths,
            accounts=surface.account_ids,
            code_preview=code[:CODE_PREVIEW_CHARS],
        )

        start = time.monotonic()
        try:
            outcome = await self.executor.run(code, surface, self.session_id)
            result = classify_success(outcome.value, outcome.output, quota.used, self.sanitizer)
        except CodegateError as e:
            failure = classify_error(e)
            result = Failure(failure.kind, failure.message, {**failure.meta, "calls_used": quota.used})
        except Exception as e:
            logger.exception("Unexpected error while running script")
            failure = classify_error(e)
            result = Failure(failure.kind, failure.message, {**failure.meta, "calls_used": quota.used})

        duration_ms = int((time.monotonic() - start) * 1000)
        if result.ok:
            preview = json.dumps(result.value)[:RESULT_PREVIEW_CHARS]
        else:
            preview = f"Error: {result.message[:ERROR_PREVIEW_CHARS]}"
        self._emit(
            "execution_result",
            intent=request.intent,
            ok=result.ok,
            kind=None if result.ok else result.kind.value,
            api_paths=api_paths,
            calls_used=quota.used,
            duration_ms=duration_ms,
            result_preview=preview,
        )
        return result
