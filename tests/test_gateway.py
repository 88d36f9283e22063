"""
Tests for session opening, identity checks and the session lifecycle.
"""

from __future__ import annotations

import json

import pytest

from assetgate_core.errors import AuthError, NotFound
from assetgate_core.gateway import authorize, open_session
from assetgate_core.organizations import ProfileResolver
from assetgate_core.wallet import Identity

from conftest import RecordingConnector, make_profile


@pytest.mark.asyncio
async def test_open_session_uses_wallet_identity(resolver, wallet):
    connector = RecordingConnector()
    session = await open_session(connector, resolver.resolve(1), wallet, "alice")
    assert session.identity.label == "alice"
    assert session.discovery is True
    assert connector.sessions[0].identity.msp_id == "Org1MSP"


@pytest.mark.asyncio
async def test_missing_identity(resolver, wallet):
    connector = RecordingConnector()
    with pytest.raises(AuthError, match="does not exist in the wallet"):
        await open_session(connector, resolver.resolve(1), wallet, "mallory")
    assert connector.sessions == []


@pytest.mark.asyncio
async def test_identity_from_other_org(resolver, wallet):
    connector = RecordingConnector()
    with pytest.raises(AuthError):
        await open_session(connector, resolver.resolve(1), wallet, "bob")
    assert connector.sessions == []


@pytest.mark.asyncio
async def test_discovery_flag_passed(resolver, wallet):
    connector = RecordingConnector()
    session = await open_session(connector, resolver.resolve(2), wallet, "bob", discovery=False)
    assert connector.sessions[0].discovery is False
    assert session.discovery is False


@pytest.mark.asyncio
async def test_context_manager_closes(resolver, wallet):
    connector = RecordingConnector()
    async with await open_session(connector, resolver.resolve(1), wallet, "alice") as session:
        assert not session.closed
    assert session.closed
    assert connector.sessions[0].closed


@pytest.mark.asyncio
async def test_close_is_idempotent(resolver, wallet):
    connector = RecordingConnector()
    session = await open_session(connector, resolver.resolve(1), wallet, "alice")
    await session.close()
    await session.close()
    assert session.closed


@pytest.mark.asyncio
async def test_closed_session_rejects_channels(resolver, wallet):
    session = await open_session(RecordingConnector(), resolver.resolve(1), wallet, "alice")
    await session.close()
    with pytest.raises(RuntimeError):
        await session.get_channel("mychannel")


@pytest.mark.asyncio
async def test_session_closed_when_body_raises(resolver, wallet):
    connector = RecordingConnector()
    with pytest.raises(ValueError):
        async with await open_session(connector, resolver.resolve(1), wallet, "alice"):
            raise ValueError("boom")
    assert connector.sessions[0].closed


@pytest.mark.asyncio
async def test_undeclared_channel(tmp_path, wallet):
    (tmp_path / "connection-org1.json").write_text(json.dumps(make_profile(1, channels=["mychannel"])))
    profile = ProfileResolver(tmp_path).resolve(1)
    async with await open_session(RecordingConnector(), profile, wallet, "alice") as session:
        channel = await session.get_channel("mychannel")
        assert channel.name == "mychannel"
        with pytest.raises(NotFound):
            await session.get_channel("otherchannel")


@pytest.mark.asyncio
async def test_contract_lookup(resolver, wallet):
    connector = RecordingConnector(payload=b"{}")
    async with await open_session(connector, resolver.resolve(1), wallet, "alice") as session:
        channel = await session.get_channel("mychannel")
        contract = await channel.get_contract("basic")
        assert (contract.channel, contract.name) == ("mychannel", "basic")
        assert await contract.submit_transaction("Ping", "a", "b") == b"{}"
        with pytest.raises(NotFound):
            await channel.get_contract("")
    assert connector.calls[0]["args"] == ["a", "b"]


def test_authorize_rejects_bad_key(resolver):
    ident = Identity(label="zed", msp_id="Org1MSP", certificate="c", private_key="garbage")
    with pytest.raises(AuthError):
        authorize(resolver.resolve(1), ident)
