"""
Recovery state machine, driven end to end through the fake bundler so that
the chain state the coordinator re-validates against evolves for real.
"""
import pytest
import pytest_asyncio
from eth_utils import to_checksum_address

from nexus_account import (
    PreconditionError,
    RecoveryCoordinator,
    RecoveryState,
    SmartAccountClient,
    ValidationError,
)
from nexus_account.chain import RecoveryStatus
from conftest import FakeBundler

NEW_OWNER = "0x" + "b" * 40


@pytest_asyncio.fixture
async def setup(network, gateway, bundler, owner_signer):
    client = SmartAccountClient(network, gateway=gateway, bundler=bundler)
    account = await client.open_account(owner_signer.address, 0)
    client.set_owner_signer(account, owner_signer)
    await client.deploy(account)
    return client, account


@pytest.mark.asyncio
async def test_full_cycle(setup, gateway):
    client, account = setup
    coordinator = client.recovery(account)
    assert coordinator.state is RecoveryState.NO_ACTIVE_REQUEST

    request = await client.initiate_recovery(account, NEW_OWNER)
    assert request.state is RecoveryState.INITIATED
    assert coordinator.state is RecoveryState.INITIATED
    assert len(request.id) == 32

    await client.confirm_recovery(account, request.id_hex)
    assert coordinator.state is RecoveryState.CONFIRMED

    executed = await client.execute_recovery(account, request.id)
    assert executed.state is RecoveryState.EXECUTED
    assert coordinator.state is RecoveryState.NO_ACTIVE_REQUEST
    assert coordinator.history == [executed]
    assert len(executed.operations) == 3

    # the cycle can only complete once
    with pytest.raises(PreconditionError):
        await client.execute_recovery(account, request.id)

    assert await client.refresh_owner(account) == gateway.owners[account.address]
    assert account.owner.lower() == NEW_OWNER


@pytest.mark.asyncio
async def test_confirm_before_initiate_fails(setup, bundler):
    client, account = setup
    sent = len(bundler.sent)
    with pytest.raises(PreconditionError):
        await client.confirm_recovery(account, b'\x01' * 32)
    assert len(bundler.sent) == sent


@pytest.mark.asyncio
async def test_execute_before_confirm_fails(setup, bundler):
    client, account = setup
    request = await client.initiate_recovery(account, NEW_OWNER)
    sent = len(bundler.sent)

    with pytest.raises(PreconditionError):
        await client.execute_recovery(account, request.id)
    assert len(bundler.sent) == sent
    assert client.recovery(account).state is RecoveryState.INITIATED


@pytest.mark.asyncio
async def test_second_initiate_rejected_locally(setup):
    client, account = setup
    await client.initiate_recovery(account, NEW_OWNER)

    with pytest.raises(PreconditionError):
        await client.initiate_recovery(account, "0x" + "c" * 40)


@pytest.mark.asyncio
async def test_confirm_twice_fails(setup):
    client, account = setup
    request = await client.initiate_recovery(account, NEW_OWNER)
    await client.confirm_recovery(account, request.id)

    with pytest.raises(PreconditionError):
        await client.confirm_recovery(account, request.id)


@pytest.mark.asyncio
async def test_confirm_unknown_id_fails(setup):
    client, account = setup
    await client.initiate_recovery(account, NEW_OWNER)

    with pytest.raises(PreconditionError):
        await client.confirm_recovery(account, b'\x02' * 32)


@pytest.mark.asyncio
async def test_new_cycle_after_execution(setup):
    client, account = setup
    first = await client.initiate_recovery(account, NEW_OWNER)
    await client.confirm_recovery(account, first.id)
    await client.execute_recovery(account, first.id)

    second = await client.initiate_recovery(account, "0x" + "c" * 40)
    assert second.state is RecoveryState.INITIATED
    assert second.id != first.id
    assert client.recovery(account).active_request is second


@pytest.mark.asyncio
async def test_confirm_waits_for_chain(network, gateway, owner_signer):
    bundler = FakeBundler(gateway)
    client = SmartAccountClient(network, gateway=gateway, bundler=bundler)
    account = await client.open_account(owner_signer.address, 0)
    client.set_owner_signer(account, owner_signer)
    await client.deploy(account)

    bundler.auto_include = False
    request = await client.initiate_recovery(account, NEW_OWNER)

    # initiation not included yet: chain does not know the request
    with pytest.raises(PreconditionError, match="not recorded on chain"):
        await client.confirm_recovery(account, request.id)

    bundler.include_pending()
    confirmed = await client.confirm_recovery(account, request.id)
    assert confirmed.state is RecoveryState.CONFIRMED


@pytest.mark.asyncio
async def test_initiate_requires_deployed_account(network, gateway, bundler, owner_signer):
    client = SmartAccountClient(network, gateway=gateway, bundler=bundler)
    account = await client.open_account(owner_signer.address, 0)
    client.set_owner_signer(account, owner_signer)

    with pytest.raises(PreconditionError, match="not deployed"):
        await client.initiate_recovery(account, NEW_OWNER)


@pytest.mark.asyncio
async def test_initiate_validates_new_owner(setup, owner_signer):
    client, account = setup
    with pytest.raises(ValidationError):
        await client.initiate_recovery(account, "0x" + "0" * 40)
    with pytest.raises(ValidationError):
        await client.initiate_recovery(account, owner_signer.address)


@pytest.mark.asyncio
async def test_track_request_from_chain(setup, gateway):
    client, account = setup
    request = await client.initiate_recovery(account, NEW_OWNER)

    # another device sees the same request
    other = RecoveryCoordinator(account, gateway)
    tracked = await other.track(request.id)
    assert tracked.state is RecoveryState.INITIATED
    assert tracked.proposed_owner.lower() == NEW_OWNER


@pytest_asyncio.fixture
async def dropped(network, gateway, owner_signer):
    """An account whose initiateRecovery operation was accepted, then dropped."""
    bundler = FakeBundler(gateway)
    client = SmartAccountClient(network, gateway=gateway, bundler=bundler)
    account = await client.open_account(owner_signer.address, 0)
    client.set_owner_signer(account, owner_signer)
    await client.deploy(account)

    bundler.auto_include = False
    request = await client.initiate_recovery(account, NEW_OWNER)
    bundler.pending.clear()
    bundler.auto_include = True
    return client, account, request


@pytest.mark.asyncio
async def test_dropped_initiate_can_be_abandoned(dropped):
    client, account, request = dropped

    with pytest.raises(PreconditionError, match="not recorded on chain"):
        await client.confirm_recovery(account, request.id)
    with pytest.raises(PreconditionError, match="abandon"):
        await client.initiate_recovery(account, NEW_OWNER)

    assert await client.abandon_recovery(account) is request
    assert client.recovery(account).state is RecoveryState.NO_ACTIVE_REQUEST

    retry = await client.initiate_recovery(account, "0x" + "c" * 40)
    assert retry.state is RecoveryState.INITIATED
    confirmed = await client.confirm_recovery(account, retry.id)
    assert confirmed.state is RecoveryState.CONFIRMED


@pytest.mark.asyncio
async def test_request_on_chain_cannot_be_abandoned(setup):
    client, account = setup
    await client.initiate_recovery(account, NEW_OWNER)

    with pytest.raises(PreconditionError, match="recorded on chain"):
        await client.abandon_recovery(account)
    assert client.recovery(account).state is RecoveryState.INITIATED


@pytest.mark.asyncio
async def test_abandon_without_request(setup):
    client, account = setup
    assert await client.abandon_recovery(account) is None


@pytest.mark.asyncio
async def test_track_replaces_request_that_never_landed(dropped, gateway):
    client, account, stale = dropped
    real_id = b'\x42' * 32
    gateway.recoveries[(account.address, real_id)] = RecoveryStatus(
        to_checksum_address("0x" + "d" * 40), False, False)

    tracked = await client.recovery(account).track(real_id)
    assert tracked.id == real_id
    assert tracked.id != stale.id
    assert client.recovery(account).active_request is tracked
