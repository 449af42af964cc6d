from profile_relay.adapters.evm.calls import SetDataCall
from profile_relay.adapters.evm.constants import RelayEngineConfig
from profile_relay.engine.router import ExecutionRouter
from profile_relay.schemas.bases import ExecutionPolicy
from eth_utils import keccak
import logging

# Reads up_controller_private_key / up_account_address / up_chain_id from the environment or .env
config = RelayEngineConfig.from_env()

data_key = keccak(text="MyCustomKey")


async def main():
    async with ExecutionRouter.from_config(config) as router:
        quota = await router.get_quota()
        print("Relay quota:", quota.quota, quota.unit)

        return await router.execute(
            SetDataCall(data_key=data_key, data_value=b"hello from a controller"),
            policy=ExecutionPolicy.RELAY_THEN_DIRECT,
            timeout=120,
        )


if __name__ == "__main__":
    import asyncio
    logging.basicConfig(level=logging.INFO)
    result = asyncio.run(main())
    if result.is_success():
        print("Executed via", result.path.value, "tx:", result.transaction_reference)
    else:
        print(result.get_error_message())
