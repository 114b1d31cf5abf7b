# =====================================
import pytest
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

from matchrelay.config import Settings
from matchrelay.services.channels import DOCUMENT_JOB, HTTP_JOB
from matchrelay.services.retry_driver import SweepReport
from matchrelay.workers import retry_tasks
from matchrelay.workers.scheduler import RetryScheduler, backoff_delay, pending_slot


@pytest.fixture
def scheduler_settings() -> Settings:
	return Settings(RETRY_BACKOFF_BASE_SECONDS=30, RETRY_BACKOFF_MAX_SECONDS=3600)


@pytest.fixture
def fake_redis():
	return MagicMock()


@pytest.fixture
def fake_app():
	return MagicMock()


@pytest.fixture
def scheduler(fake_redis, fake_app, scheduler_settings) -> RetryScheduler:
	return RetryScheduler(fake_redis, fake_app, scheduler_settings)


def test_backoff_doubles_and_caps(scheduler_settings):
	delays = [backoff_delay(n, scheduler_settings) for n in range(8)]

	assert delays[:5] == [30, 60, 120, 240, 480]
	assert max(delays) == 3600
	assert delays == sorted(delays)


def test_schedule_enqueues_sweep(scheduler, fake_redis, fake_app):
	fake_redis.set.return_value = None

	with patch.object(retry_tasks.run_retry_sweep, "apply_async") as apply_async:
		task_id = scheduler.schedule(HTTP_JOB)

	apply_async.assert_called_once_with(args=[HTTP_JOB], task_id=task_id)
	fake_redis.set.assert_called_once()
	assert fake_redis.set.call_args.args == (pending_slot(HTTP_JOB), task_id)
	assert fake_redis.set.call_args.kwargs["get"] is True
	fake_app.control.revoke.assert_not_called()


def test_schedule_replaces_pending_request(scheduler, fake_redis, fake_app):
	"""Test a second request revokes the waiting one without terminating it"""
	fake_redis.set.return_value = "older-task-id"

	with patch.object(retry_tasks.run_retry_sweep, "apply_async"):
		scheduler.schedule(DOCUMENT_JOB)

	fake_app.control.revoke.assert_called_once_with("older-task-id")
	assert "terminate" not in fake_app.control.revoke.call_args.kwargs


def test_schedule_unknown_job(scheduler):
	with pytest.raises(ValueError):
		scheduler.schedule("nightly_cleanup")


def test_release_and_hold_slot(scheduler, fake_redis):
	fake_redis.eval.return_value = 1
	assert scheduler.release_slot(HTTP_JOB, "t1") is True
	assert fake_redis.eval.call_args.args[1:] == (1, pending_slot(HTTP_JOB), "t1")

	fake_redis.set.return_value = None
	assert scheduler.hold_slot(HTTP_JOB, "t1") is False
	assert fake_redis.set.call_args.kwargs["nx"] is True


# ===== tasks =====

@pytest.fixture
def task_scheduler():
	scheduler = MagicMock()
	scheduler.hold_slot.return_value = True
	with patch.object(retry_tasks, "get_scheduler", return_value=scheduler):
		yield scheduler


def test_sweep_task_runs_driver(task_scheduler):
	"""Test the sweep task releases its slot and returns the sweep report"""
	driver = MagicMock()
	driver.run_sweep.return_value = SweepReport(channel="http", considered=1, claimed=1, sent=1)

	with patch.object(retry_tasks, "is_network_available", return_value=True), \
			patch.object(retry_tasks, "build_driver", return_value=driver) as build:
		result = retry_tasks.run_retry_sweep.apply(args=[HTTP_JOB], task_id="t-1")

	assert result.get()["sent"] == 1
	build.assert_called_once_with(HTTP_JOB)
	task_scheduler.release_slot.assert_called_once_with(HTTP_JOB, "t-1")


def test_sweep_task_waits_for_network(task_scheduler):
	with patch.object(retry_tasks, "is_network_available", return_value=False), \
			patch.object(retry_tasks, "build_driver") as build, \
			patch.object(retry_tasks, "_retry_later", return_value={"retry": True}) as retry_later:
		result = retry_tasks.run_retry_sweep.apply(args=[DOCUMENT_JOB])

	assert result.get() == {"retry": True}
	build.assert_not_called()
	assert retry_later.call_args.args[1:] == (DOCUMENT_JOB, None)


def test_retry_later_uses_backoff(task_scheduler):
	task = SimpleNamespace(
		request=SimpleNamespace(id="t-1", retries=2),
		max_retries=10,
		retry=MagicMock(side_effect=RuntimeError("retry requested")),
	)

	with pytest.raises(RuntimeError, match="retry requested"):
		retry_tasks._retry_later(task, HTTP_JOB, None)

	task_scheduler.hold_slot.assert_called_once_with(HTTP_JOB, "t-1")
	assert task.retry.call_args.kwargs["countdown"] == backoff_delay(2)


def test_retry_later_yields_to_newer_request(task_scheduler):
	"""Test a retry is dropped when a newer sweep request is already waiting"""
	task_scheduler.hold_slot.return_value = False
	task = SimpleNamespace(request=SimpleNamespace(id="t-1", retries=0), max_retries=10, retry=MagicMock())

	result = retry_tasks._retry_later(task, HTTP_JOB, None)

	assert result == {"job_id": HTTP_JOB, "superseded": True}
	task.retry.assert_not_called()


def test_retry_later_gives_up_after_max_retries(task_scheduler):
	"""Test an exhausted sweep returns a report and leaves the slot free"""
	task = SimpleNamespace(request=SimpleNamespace(id="t-1", retries=10), max_retries=10, retry=MagicMock())

	result = retry_tasks._retry_later(task, HTTP_JOB, ConnectionError("refused"))

	assert result == {"job_id": HTTP_JOB, "retries_exhausted": True, "error": "refused"}
	task.retry.assert_not_called()
	task_scheduler.hold_slot.assert_not_called()


def test_sweep_task_exhausted_offline(task_scheduler):
	with patch.object(retry_tasks, "is_network_available", return_value=False), \
			patch.object(retry_tasks, "build_driver") as build:
		result = retry_tasks.run_retry_sweep.apply(
			args=[DOCUMENT_JOB],
			task_id="t-9",
			retries=retry_tasks.run_retry_sweep.max_retries,
		)

	assert result.get() == {"job_id": DOCUMENT_JOB, "retries_exhausted": True, "error": "network unavailable"}
	build.assert_not_called()
	task_scheduler.release_slot.assert_called_once_with(DOCUMENT_JOB, "t-9")
	task_scheduler.hold_slot.assert_not_called()


def test_http_sweep_checks_scoreboard_host(task_scheduler, test_settings, monkeypatch):
	"""Test the HTTP sweep runs on a LAN with no route to the public internet"""
	from matchrelay.services import channels

	test_settings.RASPI_BASE_URL = "http://192.168.1.50:8080"
	monkeypatch.setattr(channels, "default_settings", test_settings)
	checked = []

	def lan_only(host, port):
		checked.append((host, port))
		return (host, port) == ("192.168.1.50", 8080)

	driver = MagicMock()
	driver.run_sweep.return_value = SweepReport(channel="http", considered=1, claimed=1, sent=1)

	with patch.object(retry_tasks, "is_network_available", side_effect=lan_only), \
			patch.object(retry_tasks, "build_driver", return_value=driver):
		result = retry_tasks.run_retry_sweep.apply(args=[HTTP_JOB])

	assert result.get()["sent"] == 1
	assert checked == [("192.168.1.50", 8080)]


def test_schedule_retry_sweeps_covers_every_job(task_scheduler):
	task_scheduler.schedule.side_effect = lambda job_id: f"id-{job_id}"

	result = retry_tasks.schedule_retry_sweeps.apply().get()

	assert result == {DOCUMENT_JOB: f"id-{DOCUMENT_JOB}", HTTP_JOB: f"id-{HTTP_JOB}"}
