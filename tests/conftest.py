import asyncio
from collections.abc import Callable, Iterator
from datetime import datetime
import inspect
from itertools import count
from pathlib import Path
from typing import Any

import pytest

from repoaudit.config import override_runtime_env
from repoaudit.db import init_db, reset_engine_for_tests, session_scope
from repoaudit.github.pacing import reset_default_pacer
from repoaudit.models import Repository, User


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem: pytest.Function) -> bool | None:
    marker = pyfuncitem.get_closest_marker("asyncio")
    if marker is None:
        return None
    test_func = pyfuncitem.obj
    if not inspect.iscoroutinefunction(test_func):
        return None
    fixtureinfo = getattr(pyfuncitem, "_fixtureinfo", None)
    if fixtureinfo is None:
        return None
    kwargs = {name: pyfuncitem.funcargs[name] for name in fixtureinfo.argnames}
    asyncio.run(test_func(**kwargs))
    return True


@pytest.fixture(autouse=True)
def _test_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    data_dir = tmp_path / "data"
    data_dir.mkdir(parents=True, exist_ok=True)
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{data_dir / 'repoaudit.db'}")
    monkeypatch.setenv("GITHUB_MIN_REQUEST_INTERVAL_MS", "0")
    monkeypatch.delenv("JOBS_ENABLED", raising=False)
    monkeypatch.delenv("JOBS_MAX_CONCURRENT", raising=False)

    override_runtime_env(None)
    reset_engine_for_tests()
    reset_default_pacer(None)
    init_db()
    try:
        yield
    finally:
        reset_default_pacer(None)
        reset_engine_for_tests()
        override_runtime_env(None)


_ids = count(1000)


@pytest.fixture()
def make_user() -> Callable[..., int]:
    def _make(*, access_token: str = "gho_test", username: str = "octocat") -> int:
        with session_scope() as session:
            user = User(github_id=next(_ids), username=username, access_token=access_token)
            session.add(user)
            session.flush()
            return int(user.id)

    return _make


@pytest.fixture()
def make_repository() -> Callable[..., int]:
    def _make(
        *,
        owner: str = "octo",
        name: str | None = None,
        last_fetched: datetime | None = None,
        last_pr_fetched: datetime | None = None,
        needs_full_refetch: bool = False,
        **extra: Any,
    ) -> int:
        with session_scope() as session:
            repo = Repository(
                owner=owner,
                name=name or f"repo-{next(_ids)}",
                last_fetched=last_fetched,
                last_pr_fetched=last_pr_fetched,
                needs_full_refetch=needs_full_refetch,
                **extra,
            )
            session.add(repo)
            session.flush()
            return int(repo.id)

    return _make
