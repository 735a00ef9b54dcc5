"""State store records and leased stage locks."""

import time
from datetime import datetime, timedelta

import pytest

from stackup.database import StageLock
from stackup.exceptions import LockBusy, StateNotFound
from stackup.models.stage import StageState
from stackup.services.state_service import StateStoreClient

T0 = datetime(2026, 1, 1, 12, 0, 0)


def _state(stage="state-backend", **outputs):
    return StageState(
        stage=stage,
        inputs={"terraform.tfvars": {"aws_region": "us-east-1"}},
        outputs=outputs or {"s3_bucket_name": "X"},
        resources=["aws_s3_bucket.terraform_state"],
    )


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'nested' / 'state.db'}"


def test_load_unknown_stage_raises(store):
    with pytest.raises(StateNotFound) as exc_info:
        store.load("state-backend")
    assert exc_info.value.stage == "state-backend"


def test_save_then_load(store):
    saved = store.save("state-backend", _state())

    loaded = store.load("state-backend")
    assert loaded.version == 1
    assert loaded.outputs == {"s3_bucket_name": "X"}
    assert loaded.inputs == {"terraform.tfvars": {"aws_region": "us-east-1"}}
    assert loaded.resources == ["aws_s3_bucket.terraform_state"]
    assert loaded.applied_at is not None
    assert saved.version == 1


def test_save_bumps_version(store):
    store.save("state-backend", _state())
    second = store.save("state-backend", _state(s3_bucket_name="Z"))

    assert second.version == 2
    assert store.load("state-backend").outputs == {"s3_bucket_name": "Z"}


def test_sqlite_directory_is_created(db_url, tmp_path):
    client = StateStoreClient(db_url, owner="a")
    client.save("state-backend", _state())
    assert (tmp_path / "nested" / "state.db").exists()


def test_state_survives_a_new_client(db_url):
    StateStoreClient(db_url, owner="a").save("state-backend", _state())

    assert StateStoreClient(db_url, owner="b").exists("state-backend")


def test_is_satisfied_compares_inputs(store):
    assert not store.is_satisfied("state-backend", {})

    store.save("state-backend", _state())

    assert store.is_satisfied(
        "state-backend", {"terraform.tfvars": {"aws_region": "us-east-1"}}
    )
    assert not store.is_satisfied(
        "state-backend", {"terraform.tfvars": {"aws_region": "eu-west-1"}}
    )


def test_delete_and_list(store):
    store.save("state-backend", _state())
    store.save("network-compute", _state("network-compute"))
    assert sorted(store.list_stages()) == ["network-compute", "state-backend"]

    assert store.delete("network-compute") is True
    assert store.delete("network-compute") is False
    assert store.list_stages() == ["state-backend"]


def test_lock_is_exclusive(db_url):
    first = StateStoreClient(db_url, owner="first")
    second = StateStoreClient(db_url, owner="second")
    first.acquire_lock("state-backend")

    with pytest.raises(LockBusy) as exc_info:
        second.acquire_lock("state-backend")

    assert exc_info.value.owner == "first"
    assert exc_info.value.stage == "state-backend"


def test_lock_is_reentrant_for_its_owner(store):
    store.acquire_lock("state-backend")
    store.acquire_lock("state-backend")
    assert store.lock_holder("state-backend") == "test-run"


def test_expired_lease_is_taken_over(db_url):
    stale = StateStoreClient(db_url, lease_seconds=60, owner="crashed", clock=lambda: T0)
    stale.acquire_lock("state-backend")

    later = T0 + timedelta(seconds=120)
    fresh = StateStoreClient(db_url, lease_seconds=60, owner="fresh", clock=lambda: later)
    fresh.acquire_lock("state-backend")

    assert fresh.lock_holder("state-backend") == "fresh"
    assert stale.renew_lock("state-backend") is False


def test_unexpired_lease_is_not_taken_over(db_url):
    holder = StateStoreClient(db_url, lease_seconds=60, owner="holder", clock=lambda: T0)
    holder.acquire_lock("state-backend")

    soon = T0 + timedelta(seconds=30)
    other = StateStoreClient(db_url, lease_seconds=60, owner="other", clock=lambda: soon)
    with pytest.raises(LockBusy):
        other.acquire_lock("state-backend")


def test_renew_extends_the_lease(db_url):
    now = [T0]
    holder = StateStoreClient(db_url, lease_seconds=60, owner="holder", clock=lambda: now[0])
    holder.acquire_lock("state-backend")

    now[0] = T0 + timedelta(seconds=50)
    assert holder.renew_lock("state-backend") is True

    at_first_expiry = T0 + timedelta(seconds=90)
    other = StateStoreClient(
        db_url, lease_seconds=60, owner="other", clock=lambda: at_first_expiry
    )
    with pytest.raises(LockBusy):
        other.acquire_lock("state-backend")


def test_save_is_refused_while_another_run_holds_the_lock(db_url):
    holder = StateStoreClient(db_url, owner="holder")
    writer = StateStoreClient(db_url, owner="writer")
    holder.acquire_lock("state-backend")

    with pytest.raises(LockBusy):
        writer.save("state-backend", _state())

    assert not writer.exists("state-backend")


def test_release_only_removes_own_lock(db_url):
    holder = StateStoreClient(db_url, owner="holder")
    other = StateStoreClient(db_url, owner="other")
    holder.acquire_lock("state-backend")

    assert other.release_lock("state-backend") is False
    assert holder.release_lock("state-backend") is True
    assert holder.lock_holder("state-backend") is None


def test_lock_context_releases_on_error(store):
    with pytest.raises(RuntimeError):
        with store.lock("state-backend"):
            assert store.lock_holder("state-backend") == "test-run"
            raise RuntimeError("apply failed")

    assert store.lock_holder("state-backend") is None


def test_lock_context_retries_busy_lock(db_url):
    holder = StateStoreClient(db_url, owner="holder")
    waiter = StateStoreClient(db_url, owner="waiter")
    holder.acquire_lock("state-backend")
    sleeps = []

    def release_then_sleep(delay):
        sleeps.append(delay)
        holder.release_lock("state-backend")

    with waiter.lock(
        "state-backend",
        heartbeat=False,
        attempts=3,
        base_delay=1.0,
        max_delay=4.0,
        sleep=release_then_sleep,
    ):
        assert waiter.lock_holder("state-backend") == "waiter"

    assert sleeps == [1.0]


def _lease_expiry(client, stage):
    with client.session() as db:
        return db.get(StageLock, stage).expires_at


def test_heartbeat_keeps_the_lease_alive(db_url):
    holder = StateStoreClient(db_url, lease_seconds=3, owner="holder")
    other = StateStoreClient(db_url, lease_seconds=3, owner="other")

    with holder.lock("network-compute"):
        first_expiry = _lease_expiry(holder, "network-compute")
        time.sleep(4)

        assert _lease_expiry(holder, "network-compute") > first_expiry
        with pytest.raises(LockBusy) as exc_info:
            other.acquire_lock("network-compute")
        assert exc_info.value.owner == "holder"

    assert holder.lock_holder("network-compute") is None


def test_lost_lease_fails_the_block(db_url):
    holder = StateStoreClient(db_url, lease_seconds=3, owner="holder")
    other = StateStoreClient(db_url, lease_seconds=3, owner="other")

    with pytest.raises(LockBusy) as exc_info:
        with holder.lock("network-compute"):
            holder.release_lock("network-compute")
            other.acquire_lock("network-compute")
            time.sleep(1.5)

    assert exc_info.value.owner == "other"
    assert holder.lock_holder("network-compute") == "other"
