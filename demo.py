#!/usr/bin/env python3
"""
Complete demo of the multisig coordinator against a simulated Safe
"""

from multisig_coordinator.config import CoordinatorConfig, configure_logging
from multisig_coordinator.coordinator import MultisigCoordinator
from multisig_coordinator.errors import CoordinatorError, ReconciliationRequired
from multisig_coordinator.gateways.chain import FailureMode, SimulatedChainGateway
from multisig_coordinator.gateways.store import InMemoryRecordStore
from multisig_coordinator.signer_keys import SignerKey

POOL_CONTRACT = "0x" + "aa" * 20


def main():
    configure_logging("WARNING")

    print("=" * 60)
    print("🏦 MULTISIG COORDINATOR - COMPLETE DEMO")
    print("=" * 60)
    print()

    # Step 1: Setup
    print("🔧 STEP 1: Setting up custody account owners")
    print("-" * 40)

    owners = {}
    for name in ("Alice", "Bob", "Carol"):
        owners[name] = SignerKey()
        print(f"✅ {name}: {owners[name].address}")

    gateway = SimulatedChainGateway([key.address for key in owners.values()], threshold=2)
    config = CoordinatorConfig.polygon_amoy(gateway.custody_address)
    coordinator = MultisigCoordinator(config, gateway, InMemoryRecordStore())

    print(f"✅ Custody account: {config.custody_address}")
    print(f"✅ Rules: {gateway.threshold}-of-{len(owners)} signatures required")
    print()

    # Step 2: Propose
    print("📝 STEP 2: Proposing a transaction")
    print("-" * 40)

    proposal = coordinator.propose(
        to=POOL_CONTRACT, value=0, data="0x1234", operation=0,
        description="Update pool parameters", caller=owners["Alice"].address,
    )
    transaction_id = proposal['transactionId']
    print(f"✅ Transaction ID: {transaction_id}")
    print(f"   {proposal['message']}")
    print()

    # Step 3: Sign
    print("✍️  STEP 3: Collecting signatures")
    print("-" * 40)

    for name in ("Alice", "Bob"):
        key = owners[name]
        result = coordinator.add_signature(
            transaction_id, key.address, key.sign_transaction_id(transaction_id), caller=key.address,
        )
        print(f"   {name} signed: {result['currentSignatures']}/{result['requiredSignatures']} "
              f"- {result['message']}")

    try:
        key = owners["Alice"]
        coordinator.add_signature(transaction_id, key.address, key.sign_transaction_id(transaction_id),
                                  caller=key.address)
        print("   ❌ UNEXPECTED: duplicate signature accepted")
    except CoordinatorError as e:
        print(f"   ✅ EXPECTED FAILURE ({e.kind}): {e.message}")
    print()

    # Step 4: Execute
    print("🚀 STEP 4: Executing")
    print("-" * 40)

    executed = coordinator.execute(transaction_id, caller=owners["Carol"].address)
    print(f"✅ {executed['message']}")
    print(f"   Block: {executed['blockNumber']}, gas used: {executed['gasUsed']}")
    for event in executed['events']:
        print(f"   Event: {event['name']} from {event['address']}")

    try:
        coordinator.execute(transaction_id, caller=owners["Carol"].address)
        print("   ❌ UNEXPECTED: executed twice")
    except CoordinatorError as e:
        print(f"   ✅ EXPECTED FAILURE ({e.kind}): {e.message}")
    print()

    # Step 5: Batch with a lost confirmation
    print("📦 STEP 5: Batch proposal and reconciliation")
    print("-" * 40)

    batch = coordinator.propose_batch(
        [
            {'to': POOL_CONTRACT, 'value': 0, 'data': '0xabcdef'},
            {'to': "0x" + "bb" * 20, 'value': 10 ** 15, 'data': '0x'},
        ],
        description="Fund pool and configure it", caller=owners["Bob"].address,
    )
    batch_id = batch['transactionId']
    print(f"✅ {batch['message']}")

    for name in ("Bob", "Carol"):
        key = owners[name]
        coordinator.add_signature(batch_id, key.address, key.sign_transaction_id(batch_id), caller=key.address)

    gateway.fail_next(FailureMode.CONFIRMATION_TIMEOUT)
    try:
        coordinator.execute(batch_id, caller=owners["Bob"].address)
    except ReconciliationRequired as e:
        print(f"   ⏳ {e.message}")

    print(f"   Status: {coordinator.get_status(batch_id)['message']}")
    gateway.confirm_pending()
    reconciled = coordinator.reconcile(batch_id, caller=owners["Bob"].address)
    print(f"   ✅ After reconciliation: {reconciled['status']} - {reconciled['message']}")
    print()

    # Step 6: Emergency pause
    print("🚨 STEP 6: Emergency pause proposal")
    print("-" * 40)

    pause = coordinator.emergency_action(POOL_CONTRACT, "Oracle price feed compromised",
                                         caller=owners["Carol"].address)
    print(f"✅ {pause['description']}")
    print(f"   {pause['message']}")
    print()

    # Step 7: Summary
    print("📈 STEP 7: Summary")
    print("-" * 40)

    listing = coordinator.list_transactions()
    for record in listing['records']:
        print(f"   {record['transactionId'][:18]}... {record['status']:<20} {record['description']}")
    print()
    print(f"📊 Transactions: {listing['totalCount']}, chain submissions: {len(gateway.submissions)}")


if __name__ == "__main__":
    main()
