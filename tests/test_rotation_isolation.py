"""
Tests for master password rotation against a file-backed database, where every
session gets its own connection, and for the vault row lock around record writes.
"""
from unittest.mock import MagicMock, call, patch

import pytest
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from zkvault.core.exceptions import NotFound
from zkvault.db import crud
from zkvault.db.database import get_database_engine
from zkvault.db.models import Base, PasswordEntry, Vault

OLD_CANARY = "aa" * 32 + ":" + "00" * 16
NEW_CANARY = "bb" * 32 + ":" + "11" * 16


@pytest.fixture
def file_engine(tmp_path):
    engine = get_database_engine(f"sqlite:///{tmp_path}/vault.db")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def sessions(file_engine):
    factory = sessionmaker(autocommit=False, autoflush=False, bind=file_engine)
    opened = []

    def open_session():
        session = factory()
        opened.append(session)
        return session

    yield open_session
    for session in opened:
        session.close()


@pytest.fixture
def seeded(sessions):
    db = sessions()
    user = crud.create_user(db, "alice", "ab" * 16, "cd" * 64)
    vault = crud.create_vault(db, user.id, "alice's Vault", "ef" * 32, OLD_CANARY)
    ids = [crud.create_password(db, vault.id, bytes([n]) * 16, f"{n:02x}" * 16).id for n in (1, 2)]
    return db, vault.id, ids


def test_pool_is_shared_only_for_in_memory_sqlite(tmp_path):
    assert isinstance(get_database_engine("sqlite:///:memory:").pool, StaticPool)
    assert isinstance(get_database_engine("sqlite://").pool, StaticPool)
    assert not isinstance(get_database_engine(f"sqlite:///{tmp_path}/other.db").pool, StaticPool)


def test_concurrent_commit_does_not_persist_half_a_rotation(sessions, seeded):
    db, vault_id, (first_id, second_id) = seeded
    other = sessions()
    real_rewrite = crud._rewrite_password
    calls = []

    def commit_elsewhere_then_crash(session, entry, data, iv):
        calls.append(entry.id)
        if len(calls) == 1:
            return real_rewrite(session, entry, data, iv)
        # The first record is only flushed on the rotating connection
        seen = other.query(PasswordEntry).filter(PasswordEntry.id == first_id).one()
        assert seen.data == bytes([1]) * 16
        other.commit()
        raise RuntimeError("worker died")

    payload = [(first_id, b"\xee" * 16, "ee" * 16), (second_id, b"\xff" * 16, "ff" * 16)]
    with patch("zkvault.db.crud._rewrite_password", side_effect=commit_elsewhere_then_crash):
        with pytest.raises(RuntimeError):
            crud.apply_master_password_rotation(db, vault_id, NEW_CANARY, payload)

    check = sessions()
    assert check.query(Vault).filter(Vault.id == vault_id).one().encrypted_user_id == OLD_CANARY
    stored = {entry.id: (entry.data, entry.iv) for entry in crud.get_vault_passwords(check, vault_id)}
    assert stored == {
        first_id: (bytes([1]) * 16, "01" * 16),
        second_id: (bytes([2]) * 16, "02" * 16),
    }


def test_rotation_commits_for_every_connection(sessions, seeded):
    db, vault_id, (first_id, second_id) = seeded
    payload = [(first_id, b"\xee" * 16, "ee" * 16), (second_id, b"\xff" * 16, "ff" * 16)]
    crud.apply_master_password_rotation(db, vault_id, NEW_CANARY, payload)

    check = sessions()
    assert check.query(Vault).filter(Vault.id == vault_id).one().encrypted_user_id == NEW_CANARY
    assert [entry.data for entry in crud.get_vault_passwords(check, vault_id)] == [b"\xee" * 16, b"\xff" * 16]


class TestVaultRowLock:

    def test_rotation_reads_records_under_the_lock(self, test_db_session):
        user = crud.create_user(test_db_session, "alice", "ab" * 16, "cd" * 64)
        vault = crud.create_vault(test_db_session, user.id, "v", "ef" * 32, OLD_CANARY)
        entry = crud.create_password(test_db_session, vault.id, b"\x01" * 16, "01" * 16)

        order = MagicMock()
        with patch("zkvault.db.crud.lock_vault", wraps=crud.lock_vault) as lock, \
                patch("zkvault.db.crud.get_vault_passwords", wraps=crud.get_vault_passwords) as read:
            order.attach_mock(lock, "lock_vault")
            order.attach_mock(read, "get_vault_passwords")
            crud.apply_master_password_rotation(
                test_db_session, vault.id, NEW_CANARY, [(entry.id, b"\x02" * 16, "02" * 16)]
            )

        assert order.mock_calls == [
            call.lock_vault(test_db_session, vault.id),
            call.get_vault_passwords(test_db_session, vault.id),
        ]

    def test_record_writes_take_the_lock(self, test_db_session):
        user = crud.create_user(test_db_session, "alice", "ab" * 16, "cd" * 64)
        vault = crud.create_vault(test_db_session, user.id, "v", "ef" * 32, OLD_CANARY)

        with patch("zkvault.db.crud.lock_vault", wraps=crud.lock_vault) as lock:
            entry = crud.create_password(test_db_session, vault.id, b"\x01" * 16, "01" * 16)
            crud.update_password(test_db_session, entry.id, vault.id, b"\x02" * 16, "02" * 16)
            assert crud.update_password(test_db_session, 9999, vault.id, b"\x03" * 16, "03" * 16) is None
            crud.delete_password(test_db_session, entry.id, vault.id)

        assert lock.call_args_list == [call(test_db_session, vault.id)] * 4

    def test_rotation_of_missing_vault(self, test_db_session):
        with pytest.raises(NotFound):
            crud.apply_master_password_rotation(test_db_session, 404, NEW_CANARY, [])
