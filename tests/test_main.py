import os
import shutil
import signal
import stat
import tempfile
import threading
import time
import unittest
from datetime import date, timedelta
from pathlib import Path
from unittest.mock import patch

from apscheduler.triggers.interval import IntervalTrigger

from lang_repos.config_models import CrawlerConfig
from lang_repos.core.errors import AuthFailure, RetryExhausted, StorageError, TransientError
from lang_repos.core.models import CrawlReport
from lang_repos.main import (
    TOKEN_ENV_VAR,
    install_stop_handlers,
    main,
    prepare_data_dir,
    run_one,
    run_schedule,
    scheduled_crawl,
)


class TestPrepareDataDir(unittest.TestCase):
    def setUp(self):
        self.tmp_dir = tempfile.mkdtemp()

    def tearDown(self):
        os.chmod(self.tmp_dir, stat.S_IRWXU)
        shutil.rmtree(self.tmp_dir, ignore_errors=True)

    def test_creates_missing_directory(self):
        target = Path(self.tmp_dir) / "data" / "nested"
        self.assertEqual(prepare_data_dir(target), target)
        self.assertTrue(target.is_dir())

    @unittest.skipIf(hasattr(os, "geteuid") and os.geteuid() == 0, "root can write anywhere")
    def test_unwritable_directory_is_fatal(self):
        os.chmod(self.tmp_dir, stat.S_IRUSR | stat.S_IXUSR)
        with self.assertRaises(StorageError):
            prepare_data_dir(Path(self.tmp_dir))


class TestRunOne(unittest.TestCase):
    def setUp(self):
        self.tmp_dir = tempfile.mkdtemp()
        self.config = CrawlerConfig()

    def tearDown(self):
        shutil.rmtree(self.tmp_dir, ignore_errors=True)

    @patch("lang_repos.main.ComponentFactory")
    def test_normal_completion_exits_zero(self, factory):
        factory.return_value.build.return_value.engine.run.return_value = CrawlReport(completed_full_pass=True)
        code = run_one(self.config, Path(self.tmp_dir), "tok", threading.Event())
        self.assertEqual(code, 0)

    @patch("lang_repos.main.ComponentFactory")
    def test_fatal_error_exits_non_zero(self, factory):
        factory.return_value.build.return_value.engine.run.side_effect = AuthFailure("Bad credentials")
        code = run_one(self.config, Path(self.tmp_dir), "tok", threading.Event())
        self.assertEqual(code, 1)

    @patch("lang_repos.main.ComponentFactory")
    def test_stop_event_is_passed_to_engine(self, factory):
        stop = threading.Event()
        factory.return_value.build.return_value.engine.run.return_value = CrawlReport()
        run_one(self.config, Path(self.tmp_dir), "tok", stop)

        should_stop = factory.return_value.build.call_args.kwargs["should_stop"]
        self.assertFalse(should_stop())
        stop.set()
        self.assertTrue(should_stop())


class TestMain(unittest.TestCase):
    def setUp(self):
        self.tmp_dir = tempfile.mkdtemp()
        self.env = patch.dict(os.environ)
        self.env.start()

    def tearDown(self):
        self.env.stop()
        shutil.rmtree(self.tmp_dir, ignore_errors=True)

    def test_missing_token_exits_non_zero(self):
        os.environ.pop(TOKEN_ENV_VAR, None)
        self.assertEqual(main([self.tmp_dir]), 1)

    def test_invalid_config_exits_non_zero(self):
        path = os.path.join(self.tmp_dir, "bad.yaml")
        with open(path, "w", encoding="utf-8") as f:
            f.write("page_size: 0\n")
        os.environ[TOKEN_ENV_VAR] = "tok"
        self.assertEqual(main([self.tmp_dir, "--config", path]), 1)

    @patch("lang_repos.main.install_stop_handlers")
    @patch("lang_repos.main.run_one", return_value=0)
    def test_runs_once_with_token(self, run_one_mock, _handlers):
        os.environ[TOKEN_ENV_VAR] = "tok"
        self.assertEqual(main([self.tmp_dir]), 0)
        config, data_dir, token, _stop = run_one_mock.call_args.args
        self.assertIsInstance(config, CrawlerConfig)
        self.assertEqual(data_dir, Path(self.tmp_dir))
        self.assertEqual(token, "tok")

    def test_missing_data_dir_argument_is_usage_error(self):
        with self.assertRaises(SystemExit) as ctx:
            main([])
        self.assertEqual(ctx.exception.code, 2)

    @patch("lang_repos.main.install_stop_handlers")
    @patch("lang_repos.main.run_schedule", return_value=1)
    @patch("lang_repos.main.run_one")
    def test_schedule_enabled_runs_scheduler(self, run_one_mock, run_schedule_mock, _handlers):
        path = os.path.join(self.tmp_dir, "crawler.yaml")
        with open(path, "w", encoding="utf-8") as f:
            f.write("schedule:\n  enabled: true\n  interval_hours: 6\n")
        os.environ[TOKEN_ENV_VAR] = "tok"

        self.assertEqual(main([self.tmp_dir, "--config", path]), 1)

        run_one_mock.assert_not_called()
        config = run_schedule_mock.call_args.args[0]
        self.assertEqual(config.schedule.interval_hours, 6)


class TestStopHandlers(unittest.TestCase):
    @patch("lang_repos.main.signal.signal")
    def test_sigint_and_sigterm_set_the_stop_event(self, signal_mock):
        stop = threading.Event()
        install_stop_handlers(stop)

        handlers = {c.args[0]: c.args[1] for c in signal_mock.call_args_list}
        self.assertEqual(set(handlers), {signal.SIGINT, signal.SIGTERM})

        self.assertFalse(stop.is_set())
        handlers[signal.SIGTERM](signal.SIGTERM, None)
        self.assertTrue(stop.is_set())


class TestRunSchedule(unittest.TestCase):
    def setUp(self):
        self.tmp_dir = tempfile.mkdtemp()
        self.config = CrawlerConfig(schedule={"enabled": True, "interval_hours": 12})
        self.stop = threading.Event()

    def tearDown(self):
        # releases the scheduler-stop thread
        self.stop.set()
        shutil.rmtree(self.tmp_dir, ignore_errors=True)

    @patch("lang_repos.main.BlockingScheduler")
    def test_job_never_overlaps(self, scheduler_cls):
        self.assertEqual(run_schedule(self.config, Path(self.tmp_dir), "tok", self.stop), 0)

        scheduler = scheduler_cls.return_value
        scheduler.start.assert_called_once()
        kwargs = scheduler.add_job.call_args.kwargs
        self.assertEqual(kwargs["max_instances"], 1)
        self.assertTrue(kwargs["coalesce"])
        self.assertIsInstance(kwargs["trigger"], IntervalTrigger)
        self.assertEqual(kwargs["trigger"].interval, timedelta(hours=12))
        self.assertIsNotNone(kwargs["next_run_time"])

    @patch("lang_repos.main.BlockingScheduler")
    def test_stop_event_shuts_scheduler_down(self, scheduler_cls):
        run_schedule(self.config, Path(self.tmp_dir), "tok", self.stop)
        scheduler = scheduler_cls.return_value

        self.stop.set()
        for _ in range(100):
            if scheduler.shutdown.called:
                break
            time.sleep(0.01)
        scheduler.shutdown.assert_called_once_with(wait=True)

    @patch("lang_repos.main.ComponentFactory")
    @patch("lang_repos.main.BlockingScheduler")
    def test_unrecoverable_error_ends_schedule_with_exit_code(self, scheduler_cls, factory):
        factory.return_value.build.return_value.engine.run.side_effect = AuthFailure("Bad credentials")
        scheduler = scheduler_cls.return_value

        def start():
            job = scheduler.add_job.call_args
            job.args[0](*job.kwargs["args"])

        scheduler.start.side_effect = start

        self.assertEqual(run_schedule(self.config, Path(self.tmp_dir), "tok", self.stop), 1)
        self.assertTrue(self.stop.is_set())


class TestScheduledCrawl(unittest.TestCase):
    def setUp(self):
        self.tmp_dir = tempfile.mkdtemp()
        self.config = CrawlerConfig()
        self.stop = threading.Event()
        self.outcome = {"exit_code": 0}

    def tearDown(self):
        shutil.rmtree(self.tmp_dir, ignore_errors=True)

    @patch("lang_repos.main.ComponentFactory")
    def test_retry_exhaustion_keeps_schedule_running(self, factory):
        factory.return_value.build.return_value.engine.run.side_effect = RetryExhausted(
            "search page", 5, TransientError("503")
        )
        scheduled_crawl(self.config, Path(self.tmp_dir), "tok", self.stop, self.outcome)

        self.assertFalse(self.stop.is_set())
        self.assertEqual(self.outcome["exit_code"], 0)

    @patch("lang_repos.main.ComponentFactory")
    def test_auth_failure_stops_schedule(self, factory):
        factory.return_value.build.return_value.engine.run.side_effect = AuthFailure("Bad credentials")
        scheduled_crawl(self.config, Path(self.tmp_dir), "tok", self.stop, self.outcome)

        self.assertTrue(self.stop.is_set())
        self.assertEqual(self.outcome["exit_code"], 1)



class TestComponentFactory(unittest.TestCase):
    def test_build_wires_paths_and_query(self):
        from lang_repos.core.factory import ComponentFactory

        config = CrawlerConfig(language="Go", marker_files=["go.mod", "go.sum"], include_forks=True)
        built = ComponentFactory(config).build(Path("/data"), "tok")

        self.assertEqual(built.engine.query, "language:Go fork:true")
        self.assertEqual(built.search.query, "language:Go fork:true")
        self.assertEqual(built.checkpoints.path, Path("/data/state.json"))
        self.assertEqual(built.dataset_store.path, Path("/data/github.csv"))
        self.assertEqual(built.dataset_store.columns, ["id", "name", "has_go_mod", "has_go_sum"])
        self.assertIs(built.search.client, built.markers.client)
        self.assertIsNotNone(built.engine.windows)
        self.assertEqual(built.engine.windows.since.date(), date(2008, 1, 1))

    def test_windows_can_be_disabled(self):
        from lang_repos.core.factory import ComponentFactory

        built = ComponentFactory(CrawlerConfig(split_by_created=False)).build(Path("/data"), "tok")
        self.assertIsNone(built.engine.windows)


if __name__ == "__main__":
    unittest.main()
