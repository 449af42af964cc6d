"""
Engine configuration tests.
"""

import pytest

from test_mocks import MOCK_ACCOUNT_ADDRESS, MOCK_CONTROLLER_ADDRESS, MOCK_CONTROLLER_PRIVATE_KEY

from profile_relay.adapters.evm.constants import (
    ENV_ACCOUNT_ADDRESS,
    ENV_CHAIN_ID,
    ENV_PRIVATE_KEY,
    ENV_RELAYER_URL,
    ENV_RPC_URL,
    RelayEngineConfig,
    get_explorer_url,
    get_network_config,
)
from profile_relay.engine.exceptions import ConfigurationError
from profile_relay.engine.router import ExecutionRouter
from profile_relay.schemas.bases import ExecutionPolicy


@pytest.fixture
def clean_env(monkeypatch):
    for name in (ENV_PRIVATE_KEY, ENV_ACCOUNT_ADDRESS, ENV_CHAIN_ID, ENV_RPC_URL, ENV_RELAYER_URL):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestNetworkTable:

    def test_known_chains(self):
        assert get_network_config(42).name == "LUKSO Mainnet"
        assert get_network_config(4201).relayer_url.startswith("https://")

    def test_unknown_chain(self):
        assert get_network_config(1) is None
        assert get_explorer_url("0xabc", chain_id=1) is None

    def test_explorer_url(self):
        assert get_explorer_url("0xabc", chain_id=42) == "https://explorer.lukso.network/tx/0xabc"


class TestRelayEngineConfig:

    def test_defaults_from_network_table(self):
        config = RelayEngineConfig(
            chain_id=42,
            account_address=MOCK_ACCOUNT_ADDRESS.lower(),
            controller_private_key=MOCK_CONTROLLER_PRIVATE_KEY,
        )

        assert config.account_address == MOCK_ACCOUNT_ADDRESS
        assert config.rpc_url == get_network_config(42).rpc_url
        assert config.relayer_url == get_network_config(42).relayer_url
        assert config.default_policy == ExecutionPolicy.RELAY_THEN_DIRECT
        assert config.controller_address == MOCK_CONTROLLER_ADDRESS

    def test_unknown_chain_needs_rpc(self):
        with pytest.raises(ConfigurationError):
            RelayEngineConfig(
                chain_id=31337,
                account_address=MOCK_ACCOUNT_ADDRESS,
                controller_private_key=MOCK_CONTROLLER_PRIVATE_KEY,
            )

    def test_unknown_chain_with_rpc_has_no_relay(self):
        config = RelayEngineConfig(
            chain_id=31337,
            account_address=MOCK_ACCOUNT_ADDRESS,
            controller_private_key=MOCK_CONTROLLER_PRIVATE_KEY,
            rpc_url="http://localhost:8545",
        )
        assert config.relayer_url is None

    def test_invalid_account(self):
        with pytest.raises(ValueError):
            RelayEngineConfig(chain_id=42, account_address="0x1234", controller_private_key=MOCK_CONTROLLER_PRIVATE_KEY)

    def test_private_key_hidden(self):
        config = RelayEngineConfig(
            chain_id=42,
            account_address=MOCK_ACCOUNT_ADDRESS,
            controller_private_key=MOCK_CONTROLLER_PRIVATE_KEY,
        )
        key_hex = MOCK_CONTROLLER_PRIVATE_KEY[2:]
        assert key_hex not in repr(config)
        assert key_hex not in config.model_dump_json()

    def test_from_env(self, clean_env):
        clean_env.setenv(ENV_PRIVATE_KEY, MOCK_CONTROLLER_PRIVATE_KEY)
        clean_env.setenv(ENV_ACCOUNT_ADDRESS, MOCK_ACCOUNT_ADDRESS)
        clean_env.setenv(ENV_CHAIN_ID, "4201")
        clean_env.setenv(ENV_RELAYER_URL, "https://relay.example/api")

        config = RelayEngineConfig.from_env(default_policy=ExecutionPolicy.DIRECT_ONLY)

        assert config.chain_id == 4201
        assert config.rpc_url == get_network_config(4201).rpc_url
        assert config.relayer_url == "https://relay.example/api"
        assert config.default_policy == ExecutionPolicy.DIRECT_ONLY

    def test_from_env_requires_key(self, clean_env):
        clean_env.setenv(ENV_ACCOUNT_ADDRESS, MOCK_ACCOUNT_ADDRESS)
        with pytest.raises(ConfigurationError, match=ENV_PRIVATE_KEY):
            RelayEngineConfig.from_env()

    def test_from_env_requires_account(self, clean_env):
        clean_env.setenv(ENV_PRIVATE_KEY, MOCK_CONTROLLER_PRIVATE_KEY)
        with pytest.raises(ConfigurationError, match=ENV_ACCOUNT_ADDRESS):
            RelayEngineConfig.from_env()

    @pytest.mark.parametrize("chain_id", ["lukso", "", "0x2a"])
    def test_from_env_rejects_non_integer_chain_id(self, clean_env, chain_id):
        clean_env.setenv(ENV_PRIVATE_KEY, MOCK_CONTROLLER_PRIVATE_KEY)
        clean_env.setenv(ENV_ACCOUNT_ADDRESS, MOCK_ACCOUNT_ADDRESS)
        clean_env.setenv(ENV_CHAIN_ID, chain_id)
        with pytest.raises(ConfigurationError, match=ENV_CHAIN_ID):
            RelayEngineConfig.from_env()


class TestRouterFromConfig:

    @pytest.mark.asyncio
    async def test_builds_relay_and_direct_paths(self):
        config = RelayEngineConfig(
            chain_id=42,
            account_address=MOCK_ACCOUNT_ADDRESS,
            controller_private_key=MOCK_CONTROLLER_PRIVATE_KEY,
        )

        async with ExecutionRouter.from_config(config) as router:
            assert router.controller_address == MOCK_CONTROLLER_ADDRESS
            assert router.account_address == MOCK_ACCOUNT_ADDRESS
            assert router.default_policy == ExecutionPolicy.RELAY_THEN_DIRECT
            assert MOCK_CONTROLLER_PRIVATE_KEY[2:] not in repr(router)

    @pytest.mark.asyncio
    async def test_without_relay_url_relay_only_is_rejected(self):
        config = RelayEngineConfig(
            chain_id=31337,
            account_address=MOCK_ACCOUNT_ADDRESS,
            controller_private_key=MOCK_CONTROLLER_PRIVATE_KEY,
            rpc_url="http://localhost:8545",
        )

        async with ExecutionRouter.from_config(config) as router:
            with pytest.raises(ConfigurationError):
                await router.execute(b"\x01", policy=ExecutionPolicy.RELAY_ONLY)
