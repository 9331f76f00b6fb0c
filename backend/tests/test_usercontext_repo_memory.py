"""
In-memory repositories: copy-on-read and snapshot/restore transactions.
"""
from __future__ import annotations

from datetime import date

import pytest

from backend.tests.utils.school import SUBSTITUTE_STAFF_ID, TEACHER
from backend.usercontext.domain import Person, Profile
from backend.usercontext.repo_memory import MemoryTransactionRunner, memory_repositories


def test_reads_return_copies(store):
    repos = memory_repositories(store)
    person = repos.persons.find_by_account_id(TEACHER)
    person.first_name = "changed"
    assert repos.persons.find_by_account_id(TEACHER).first_name == "Erika"


def test_create_assigns_ids_after_seeded_rows(store):
    repos = memory_repositories(store)
    created = repos.persons.create(Person(id=0, first_name="Neu", last_name="Person"))
    assert created.id == 72
    assert created.created_at is not None


def test_profile_create_rejects_duplicates(store):
    repos = memory_repositories(store)
    with pytest.raises(ValueError):
        repos.profiles.create(Profile(account_id=TEACHER))


def test_substitutions_prefetch_group(store):
    repos = memory_repositories(store)
    subs = repos.substitutions.find_active_by_substitute(SUBSTITUTE_STAFF_ID, date(2026, 3, 10))
    assert sorted(s.group_id for s in subs) == [1, 3]
    assert all(s.group is not None and s.group.id == s.group_id for s in subs)


def test_transaction_commits(store):
    tx = MemoryTransactionRunner(store)
    tx.run(lambda repos: repos.profiles.update(Profile(account_id=TEACHER, id=1, bio="neu")))
    assert store.profiles[TEACHER].bio == "neu"
    assert (tx.commits, tx.rollbacks) == (1, 0)


def test_transaction_restores_snapshot_on_error(store):
    tx = MemoryTransactionRunner(store)

    def work(repos):
        repos.persons.create(Person(id=0, first_name="Weg", last_name="Damit", account_id=99))
        repos.profiles.update(Profile(account_id=TEACHER, id=1, bio="weg"))
        raise RuntimeError("abort")

    with pytest.raises(RuntimeError):
        tx.run(work)
    assert store.profiles[TEACHER].bio == "Mathe und Sport"
    assert all(p.account_id != 99 for p in store.persons.values())
    assert (tx.commits, tx.rollbacks) == (0, 1)
    # Id sequence is restored too.
    assert memory_repositories(store).persons.create(Person(id=0, first_name="A", last_name="B")).id == 72
