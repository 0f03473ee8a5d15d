import asyncio
import inspect
from typing import Any, Callable, Optional, Set

from loguru import logger

from polling_request_client.clock import Clock, LoopClock
from polling_request_client.errors import (
    ConfigurationError,
    RequestError,
    RunInProgressError,
    TimeoutExhaustedError,
)
from polling_request_client.executor import HTTPExecutor, result_adapter
from polling_request_client.models import (
    PollingSchedule,
    RequestModel,
    RequestResult,
    RequestSpec,
    RunState,
)
from polling_request_client.timers import ScheduledTimerSet

SuccessCallback = Callable[[Any], Any]
FailureCallback = Callable[[RequestError], Any]


class PendingRun:
    """State of one start() call.

    The run object doubles as the token that validates completions: a
    response is only delivered while the run is still in the phase that
    issued the request, so answers arriving after cancellation, failure
    or a timeout fallback are dropped instead of reaching the caller.
    """

    def __init__(
        self,
        model: Optional[RequestModel],
        timers: ScheduledTimerSet,
        started_at: float,
        future: "asyncio.Future[RequestResult]",
        on_success: Optional[SuccessCallback],
        on_failure: Optional[FailureCallback],
    ):
        self.model = model
        self.timers = timers
        self.started_at = started_at
        self.future = future
        self.on_success = on_success
        self.on_failure = on_failure
        self.state = RunState.idle
        self.attempts = 0
        self.tasks: Set["asyncio.Future[Any]"] = set()


class PollingOrchestrator:
    def __init__(
        self,
        result_type: Any = Any,
        executor: Optional[HTTPExecutor] = None,
        clock: Optional[Clock] = None,
    ):
        self.result_type = result_type
        self.result_adapter = result_adapter(result_type)
        self.executor = executor or HTTPExecutor()
        self.clock = clock or LoopClock()
        self.request_model: Optional[RequestModel] = None
        self.logger = logger
        self._run: Optional[PendingRun] = None

    @property
    def state(self) -> RunState:
        return self._run.state if self._run is not None else RunState.idle

    def start(
        self,
        model: RequestModel,
        on_success: Optional[SuccessCallback] = None,
        on_failure: Optional[FailureCallback] = None,
    ) -> "asyncio.Future[RequestResult]":
        """Begin a run and return immediately.

        Without a polling spec the result request is issued straight away.
        Otherwise one timer per scheduled delay is registered and the first
        polling attempt fires at once. The returned future resolves exactly
        once with the RequestResult that is also handed to the callbacks; it
        is cancelled if stop_polling() ends the run first.
        """
        if self._run is not None and not self._run.state.is_terminal:
            raise RunInProgressError()

        self.request_model = model
        run = self._new_run(model, on_success, on_failure)
        self._run = run

        if model.polling_spec is None:
            self.logger.info("No polling configured, requesting result directly")
            self._request_result(run)
        else:
            self._start_polling(run, model.polling_spec)
        return run.future

    async def poll_until_complete(self, model: RequestModel) -> Any:
        """Run to completion and return the decoded value, raising the run's error"""
        result = await self.start(model)
        return result.unwrap()

    def stop_polling(self) -> None:
        """Cancel every polling attempt that has not fired yet.

        Requests already in flight are not aborted, but their responses are
        discarded. Neither callback is invoked. A result request issued
        directly or as a timeout fallback is left to finish.
        """
        run = self._run
        if run is None:
            return

        run.timers.cancel_all()
        if run.state is RunState.polling:
            run.state = RunState.cancelled
            run.future.cancel()
            self.logger.info(f"Polling stopped after {run.attempts} attempt(s)")

    def make_result_request_after_polling(
        self,
        on_success: Optional[SuccessCallback] = None,
        on_failure: Optional[FailureCallback] = None,
        model: Optional[RequestModel] = None,
    ) -> "asyncio.Future[RequestResult]":
        """Fetch the result independently of any polling run"""
        model = model or self.request_model
        run = self._new_run(model, on_success, on_failure)
        if model is None:
            self._fail_soon(run, ConfigurationError("No request model to fetch a result for"))
        else:
            self._request_result(run)
        return run.future

    def _new_run(
        self,
        model: Optional[RequestModel],
        on_success: Optional[SuccessCallback],
        on_failure: Optional[FailureCallback],
    ) -> PendingRun:
        return PendingRun(
            model=model,
            timers=ScheduledTimerSet(self.clock),
            started_at=self.clock.time(),
            future=asyncio.get_running_loop().create_future(),
            on_success=on_success,
            on_failure=on_failure,
        )

    def _start_polling(self, run: PendingRun, schedule: PollingSchedule) -> None:
        try:
            delays = schedule.delays()
        except ConfigurationError as e:
            self.logger.error(f"Invalid polling schedule: {e.message}")
            self._fail_soon(run, e)
            return

        run.state = RunState.polling
        for delay in delays:
            run.timers.schedule(delay, lambda: self._on_timer(run))
        self.logger.info(
            f"Polling {schedule.target.url}: {len(delays)} attempt(s) "
            f"within {schedule.overall_timeout_seconds}s"
        )

    def _on_timer(self, run: PendingRun) -> None:
        schedule = run.model.polling_spec if run.model is not None else None
        if run.state is not RunState.polling or schedule is None:
            self.logger.debug("Timer fired for a run that is no longer polling")
            return

        elapsed = self.clock.time() - run.started_at
        if elapsed < schedule.overall_timeout_seconds:
            run.attempts += 1
            self.logger.debug(f"Polling attempt {run.attempts} at {elapsed:.2f}s")
            self._dispatch(run, RunState.polling, schedule.polling_request())
            return

        run.timers.cancel_all()
        if schedule.fallback_to_result_on_timeout:
            self.logger.info(
                f"Polling timed out after {elapsed:.2f}s, falling back to result request"
            )
            self._request_result(run)
        else:
            self._finish(
                run,
                error=TimeoutExhaustedError(
                    f"Job did not complete within {schedule.overall_timeout_seconds} seconds"
                ),
            )

    def _request_result(self, run: PendingRun) -> None:
        run.state = RunState.awaiting_result
        run.attempts += 1
        self._dispatch(run, RunState.awaiting_result, run.model.result_spec)

    def _dispatch(self, run: PendingRun, phase: RunState, spec: RequestSpec) -> None:
        task = asyncio.get_running_loop().create_task(self._perform(run, phase, spec))
        run.tasks.add(task)
        task.add_done_callback(run.tasks.discard)

    async def _perform(self, run: PendingRun, phase: RunState, spec: RequestSpec) -> None:
        try:
            value = await self.executor.execute(
                spec, self.result_adapter, run.model.body, run.model.headers
            )
        except RequestError as e:
            self._complete(run, phase, error=e)
        except Exception as e:
            self.logger.exception(f"Unexpected error requesting {spec.url}")
            self._complete(run, phase, error=RequestError(f"Unexpected error: {e}"))
        else:
            self._complete(run, phase, value=value)

    def _complete(
        self,
        run: PendingRun,
        phase: RunState,
        value: Any = None,
        error: Optional[RequestError] = None,
    ) -> None:
        if run.state is not phase:
            self.logger.debug(
                f"Dropping late {phase.value} response, run is {run.state.value}"
            )
            return
        self._finish(run, value=value, error=error)

    def _finish(
        self,
        run: PendingRun,
        value: Any = None,
        error: Optional[RequestError] = None,
    ) -> None:
        if run.future.done():
            return

        run.timers.cancel_all()
        run.state = RunState.failed if error is not None else RunState.succeeded
        result = RequestResult(
            value=value,
            error=error,
            attempts=run.attempts,
            elapsed_time=self.clock.time() - run.started_at,
        )
        run.future.set_result(result)

        if error is not None:
            self.logger.info(f"Run failed after {run.attempts} request(s): {error.message}")
            self._notify(run, run.on_failure, error)
        else:
            self.logger.info(f"Run succeeded after {run.attempts} request(s)")
            self._notify(run, run.on_success, value)

    def _fail_soon(self, run: PendingRun, error: RequestError) -> None:
        asyncio.get_running_loop().call_soon(self._finish, run, None, error)

    def _notify(self, run: PendingRun, callback: Optional[Callable[[Any], Any]], argument: Any) -> None:
        if callback is None:
            return
        try:
            outcome = callback(argument)
        except Exception:
            self.logger.exception(f"Run callback {callback!r} raised")
            return
        if inspect.isawaitable(outcome):
            task = asyncio.ensure_future(self._await_callback(callback, outcome))
            run.tasks.add(task)
            task.add_done_callback(run.tasks.discard)

    async def _await_callback(self, callback: Callable[[Any], Any], outcome: Any) -> None:
        try:
            await outcome
        except Exception:
            self.logger.exception(f"Run callback {callback!r} raised")
