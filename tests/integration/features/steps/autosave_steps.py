"""Autosave integration steps.

Drives a real tracker against the in-process progress service through
``httpx.ASGITransport``. Each step runs its coroutine with ``anyio.run``;
the tracker and its HTTP client persist on the behave context between steps.
"""

from __future__ import annotations

from typing import Any, Dict, List

import anyio
import httpx
from behave import given, then, when

from clinic.logic.survey_flow import build_autosave_tracker
from clinic.main import create_app


def _answers(text: str) -> List[int]:
    return [int(v) for v in text.split(",") if v.strip()]


def _new_tracker(context):
    http = httpx.AsyncClient(
        transport=httpx.ASGITransport(app=context.app),
        base_url=context.config_model.api.base_url,
    )
    context.http_clients.append(http)
    return build_autosave_tracker(context.config_model, http_client=http)


def _stored(context) -> Dict[str, Any]:
    return anyio.run(context.tracker.api.get_progress, context.session_id)


# ------------------
# Given steps
# ------------------


@given("the progress service is running in-process")
def step_service_running(context):
    context.app = create_app(context.config_model)


@given("a guest starts a {total:d}-question survey")
def step_guest_starts(context, total: int):
    context.total_steps = total
    context.tracker = _new_tracker(context)
    context.session_id = anyio.run(
        context.tracker.start,
        {"current_step": 0, "total_steps": total, "contact_hint": {"email": "guest@example.com"}},
    )
    assert context.session_id


# ------------------
# When steps
# ------------------


@when('the guest answers questions {first:d} to {last:d} with "{values}"')
def step_guest_answers(context, first: int, last: int, values: str):
    answers = _answers(values)
    assert len(answers) == last - first + 1
    tracker = context.tracker
    observed = context.observed

    async def main():
        done = anyio.Event()

        async def watch():
            while not done.is_set():
                observed.append(await tracker.api.get_progress(context.session_id))
                await anyio.sleep(0.001)

        async def answer(step: int, value: int):
            await anyio.sleep((step - first) * 0.002)
            await tracker.update({"current_step": step, "responses": {f"q{step}": value}})

        async with anyio.create_task_group() as tg:
            tg.start_soon(watch)
            async with anyio.create_task_group() as writers:
                for offset, value in enumerate(answers):
                    writers.start_soon(answer, first + offset, value)
            done.set()

    anyio.run(main)
    observed.append(_stored(context))


@when("the guest starts the survey again")
def step_guest_starts_again(context):
    again = anyio.run(context.tracker.start, {"current_step": 0, "total_steps": context.total_steps})
    assert again == context.session_id, (again, context.session_id)


@when("the page is reloaded in the same context")
def step_reload(context):
    context.tracker = _new_tracker(context)
    context.resumed_id = anyio.run(
        context.tracker.start, {"current_step": 0, "total_steps": context.total_steps}
    )


@when("the guest completes the survey")
def step_guest_completes(context):
    anyio.run(context.tracker.complete)


# ------------------
# Then steps
# ------------------


@then("the stored progress is at step {step:d}")
def step_stored_step(context, step: int):
    assert _stored(context)["current_step"] == step


@then('the stored answers are "{values}"')
def step_stored_answers(context, values: str):
    expected = {f"q{i}": v for i, v in enumerate(_answers(values), start=1)}
    assert _stored(context)["responses"] == expected


@then("no observed snapshot regressed")
def step_no_regression(context):
    observed = context.observed
    assert observed, "watcher recorded nothing"
    for before, after in zip(observed, observed[1:]):
        assert after["current_step"] >= before["current_step"], (before, after)
        assert before["responses"].items() <= after["responses"].items(), (before, after)


@then("the admin list shows {count:d} incomplete survey")
def step_admin_list(context, count: int):
    rows = anyio.run(context.tracker.api.request, "GET", "/surveys/incomplete/admin/list")
    assert len(rows) == count, rows


@then("the resumed session is the original session")
def step_resumed(context):
    assert context.resumed_id == context.session_id
    assert _stored(context)["responses"] == {"q1": 4, "q2": 5}


@then("no progress session is remembered")
def step_no_session(context):
    assert context.tracker.get_current_session_id() is None


@then("the admin stats report {count:d} incomplete surveys")
def step_admin_stats(context, count: int):
    stats = anyio.run(context.tracker.api.request, "GET", "/surveys/incomplete/admin/stats")
    assert stats["total_incomplete"] == count, stats
