"""Lifecycle finite state machines for the two ingest lanes.

Each Ingest carries an upload lane and an analysis lane. An FSM instance
is created at the lane's persisted state to check that an event is legal
before :class:`~fontingest.store.IngestRepository` persists the change.

The FSMs are purely validation tools -- they do NOT perform store writes
or have on_enter_state callbacks. The cross-lane rule (analysis may not
leave ``not_started`` before the upload is stored) lives in the
repository because it spans both machines.

Only ``canceled`` is final. Retry, reset and requeue transitions leave
every other "terminal" state, and ``requeue`` also recovers an analysis
lane left mid-run by a crashed worker.
"""

from __future__ import annotations

from statemachine import State, StateMachine


class UploadLifecycleSM(StateMachine):
    """Upload lane: bytes moving from the client into the object store.

    States:
        pending   -- Ingest registered, nothing transferred.
        hashing   -- Client computing quick/content hashes.
        uploading -- Chunks in flight.
        paused    -- User paused the transfer.
        resumed   -- Transfer continuing after a pause.
        retrying  -- Transient store error, backing off.
        uploaded  -- All bytes stored.
        verifying -- Server re-hashing the stored bytes.
        failed    -- Transfer or verification failed.
        canceled  -- User canceled; analysis never starts.
    """

    pending = State("pending", initial=True, value="pending")
    hashing = State("hashing", value="hashing")
    uploading = State("uploading", value="uploading")
    paused = State("paused", value="paused")
    resumed = State("resumed", value="resumed")
    retrying = State("retrying", value="retrying")
    uploaded = State("uploaded", value="uploaded")
    verifying = State("verifying", value="verifying")
    failed = State("failed", value="failed")
    canceled = State("canceled", value="canceled", final=True)

    start_hashing = pending.to(hashing)
    start_upload = hashing.to(uploading) | pending.to(uploading) | retrying.to(uploading)
    pause = uploading.to(paused) | resumed.to(paused)
    resume = paused.to(resumed)
    retry = uploading.to(retrying) | resumed.to(retrying)
    complete_upload = uploading.to(uploaded) | resumed.to(uploaded)
    verify = uploaded.to(verifying)
    verified = verifying.to(uploaded)
    fail = (
        pending.to(failed)
        | hashing.to(failed)
        | uploading.to(failed)
        | resumed.to(failed)
        | retrying.to(failed)
        | verifying.to(failed)
        | uploaded.to(failed)
    )
    cancel = (
        pending.to(canceled)
        | hashing.to(canceled)
        | uploading.to(canceled)
        | paused.to(canceled)
        | resumed.to(canceled)
        | retrying.to(canceled)
    )
    reset = failed.to(pending)


class AnalysisLifecycleSM(StateMachine):
    """Analysis lane: the visual -> enriched -> summary pipeline.

    States:
        not_started -- Upload not finished, or analysis disabled.
        queued      -- Waiting for a pipeline slot.
        analyzing   -- Visual stage running.
        enriching   -- Enriched/summary stages running.
        retrying    -- Backing off after a transient model error.
        complete    -- Family record persisted with analysis results.
        error       -- Analysis could not produce a result.
        quarantined -- Held back by an unresolved style conflict.
    """

    not_started = State("not_started", initial=True, value="not_started")
    queued = State("queued", value="queued")
    analyzing = State("analyzing", value="analyzing")
    enriching = State("enriching", value="enriching")
    retrying = State("retrying", value="retrying")
    complete = State("complete", value="complete")
    errored = State("error", value="error")
    quarantined = State("quarantined", value="quarantined")

    enqueue = not_started.to(queued)
    start = queued.to(analyzing) | retrying.to(analyzing)
    enrich = analyzing.to(enriching)
    retry = analyzing.to(retrying) | enriching.to(retrying)
    finish = analyzing.to(complete) | enriching.to(complete)
    fail = (
        queued.to(errored)
        | analyzing.to(errored)
        | enriching.to(errored)
        | retrying.to(errored)
    )
    quarantine = queued.to(quarantined) | analyzing.to(quarantined) | enriching.to(quarantined)
    requeue = (
        errored.to(queued)
        | quarantined.to(queued)
        | complete.to(queued)
        | analyzing.to(queued)
        | enriching.to(queued)
        | retrying.to(queued)
    )


def create_upload_fsm(current_state: str) -> UploadLifecycleSM:
    """Create an upload-lane FSM positioned at *current_state*."""
    return UploadLifecycleSM(start_value=current_state)


def create_analysis_fsm(current_state: str) -> AnalysisLifecycleSM:
    """Create an analysis-lane FSM positioned at *current_state*.

    Args:
        current_state: One of the :class:`~fontingest.models.AnalysisState`
            values.

    Returns:
        An AnalysisLifecycleSM positioned at *current_state*.
    """
    return AnalysisLifecycleSM(start_value=current_state)


UPLOAD_EVENTS: frozenset[str] = frozenset({
    "start_hashing",
    "start_upload",
    "pause",
    "resume",
    "retry",
    "complete_upload",
    "verify",
    "verified",
    "fail",
    "cancel",
    "reset",
})

ANALYSIS_EVENTS: frozenset[str] = frozenset({
    "enqueue",
    "start",
    "enrich",
    "retry",
    "finish",
    "fail",
    "quarantine",
    "requeue",
})
