"""
Shared test fixtures.

Powertools settings must be in the environment before any handler or
layer module is imported.
"""

import os

os.environ.setdefault("POWERTOOLS_TRACE_DISABLED", "true")
os.environ.setdefault("POWERTOOLS_SERVICE_NAME", "budget-dashboard-ingest")
os.environ.setdefault("POWERTOOLS_METRICS_NAMESPACE", "BudgetDashboard")
os.environ.setdefault("AWS_DEFAULT_REGION", "eu-north-1")

import copy
import json
import importlib.util
import uuid
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from models import OAuthToken

FUNCTIONS_DIR = Path(__file__).resolve().parent.parent / "functions"


class FakeSupabase:
    """In-memory stand-in for SupabaseClient."""

    def __init__(self):
        self.users = {}
        self.summaries = {}
        self.tokens = {}
        self.jobs = {}
        self.budgets = {}
        self.upsert_calls = []
        self.evictions = []

    # Auth
    def get_user_id(self, access_token):
        return self.users.get(access_token)

    # Summaries
    def get_monthly_summaries(self, company, year):
        rows = [s for (c, y, _), s in self.summaries.items() if c == company and y == year]
        return sorted(rows, key=lambda s: s.month)

    def upsert_monthly_summary(self, summary):
        self.upsert_calls.append(summary.key)
        self.summaries[summary.key] = replace(summary)
        return summary.to_row()

    def delete_zero_monthly_summaries(self, company, year):
        self.evictions.append((company, year))
        for key in [k for k, s in self.summaries.items() if k[:2] == (company, year) and s.is_zero]:
            del self.summaries[key]

    # Tokens
    def get_fortnox_token(self, company, user_id):
        token = self.tokens.get((company, user_id))
        return replace(token) if token else None

    def upsert_fortnox_token(self, token):
        self.tokens[(token.company, token.user_id)] = replace(token)
        return token.to_row()

    def update_fortnox_token(self, token, expected_version):
        stored = self.tokens.get((token.company, token.user_id))
        if stored is None or stored.version != expected_version:
            return False
        self.tokens[(token.company, token.user_id)] = replace(token)
        return True

    # Jobs
    def create_import_job(self, data):
        row = copy.deepcopy(data)
        row["id"] = str(uuid.uuid4())
        row["created_at"] = datetime.now(timezone.utc).isoformat()
        self.jobs[row["id"]] = row
        return copy.deepcopy(row)

    def get_import_job(self, job_id):
        row = self.jobs.get(job_id)
        return copy.deepcopy(row) if row else None

    def update_import_job(self, job_id, data):
        row = self.jobs[job_id]
        row.update(copy.deepcopy(data))
        row["updated_at"] = datetime.now(timezone.utc).isoformat()
        return copy.deepcopy(row)

    def get_running_import_jobs(self, company):
        return [
            copy.deepcopy(row) for row in self.jobs.values()
            if row["company"] == company and row["status"] == "running"
        ]

    # Budgets
    def get_budget(self, company, year):
        return copy.deepcopy(self.budgets.get((company, year)))

    def upsert_budget(self, company, year, data):
        self.budgets[(company, year)] = {"company": company, "year": year, "data": copy.deepcopy(data)}
        return self.budgets[(company, year)]


class FakeLambdaContext:
    function_name = "fortnox-import-range"
    memory_limit_in_mb = 512
    invoked_function_arn = "arn:aws:lambda:eu-north-1:123456789012:function:fortnox-import-range"
    aws_request_id = "test-request-id"

    def __init__(self, remaining_ms=900_000):
        self.remaining_ms = remaining_ms

    def get_remaining_time_in_millis(self):
        return self.remaining_ms


class SleepRecorder:
    """Replaces time.sleep and records requested delays."""

    def __init__(self):
        self.calls = []

    def __call__(self, seconds):
        self.calls.append(seconds)


class HandlerLoader:
    """Loads functions/<name>/handler.py under a unique module name."""

    def __init__(self):
        self._modules = {}

    def __call__(self, name):
        if name not in self._modules:
            path = FUNCTIONS_DIR / name / "handler.py"
            module_spec = importlib.util.spec_from_file_location(f"{name}_handler", path)
            module = importlib.util.module_from_spec(module_spec)
            module_spec.loader.exec_module(module)
            self._modules[name] = module
        return self._modules[name]


def make_token(company="Acme AB", user_id="user-1", expires_in=3600, version=1, now=None):
    now = now or datetime.now(timezone.utc)
    return OAuthToken(
        company=company,
        user_id=user_id,
        access_token=f"access-v{version}",
        refresh_token=f"refresh-v{version}",
        expires_at=now + timedelta(seconds=expires_in),
        updated_at=now,
        version=version,
    )


def api_event(body=None, token="jwt-1", query=None):
    event = {
        "httpMethod": "POST",
        "headers": {"Authorization": f"Bearer {token}"} if token else {},
        "body": json.dumps(body) if body is not None else None,
    }
    if query is not None:
        event["queryStringParameters"] = query
    return event


@pytest.fixture
def supabase():
    fake = FakeSupabase()
    fake.users["jwt-1"] = "user-1"
    fake.users["jwt-2"] = "user-2"
    return fake


@pytest.fixture
def lambda_context():
    return FakeLambdaContext()


@pytest.fixture
def sleep():
    return SleepRecorder()


@pytest.fixture(scope="session")
def load_handler():
    return HandlerLoader()


@pytest.fixture
def token_factory():
    return make_token


@pytest.fixture
def event_factory():
    return api_event
