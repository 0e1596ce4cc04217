#!/usr/bin/env python3
"""
Web interface for the multisig coordinator
"""

import logging
import os
from typing import Callable, Optional

from flask import Flask, current_app, jsonify, request

from multisig_coordinator.config import CoordinatorConfig, configure_logging
from multisig_coordinator.coordinator import MultisigCoordinator
from multisig_coordinator.errors import CoordinatorError, ValidationError
from multisig_coordinator.gateways.store import InMemoryRecordStore

logger = logging.getLogger(__name__)

CALLER_HEADER = "X-Caller-Address"

Authenticator = Callable[[object], Optional[str]]


def header_authenticator(req) -> Optional[str]:
    """Caller identity as established by the fronting auth layer"""
    return req.headers.get(CALLER_HEADER) or None


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _coordinator() -> MultisigCoordinator:
    return current_app.config['COORDINATOR']


def _caller() -> Optional[str]:
    return current_app.config['AUTHENTICATOR'](request)


def create_app(coordinator: MultisigCoordinator, authenticator: Authenticator = header_authenticator) -> Flask:
    app = Flask(__name__)
    app.config['COORDINATOR'] = coordinator
    app.config['AUTHENTICATOR'] = authenticator

    @app.errorhandler(CoordinatorError)
    def handle_coordinator_error(e: CoordinatorError):
        logger.info("%s %s -> %s: %s", request.method, request.path, e.kind, e.message)
        return jsonify(e.to_dict()), e.http_status

    @app.route('/api/transactions', methods=['POST'])
    def propose_transaction():
        """Propose a single operation"""
        data = _json_body()
        return jsonify(_coordinator().propose(
            to=data.get('to'),
            value=data.get('value', 0),
            data=data.get('data'),
            operation=data.get('operation', 0),
            description=data.get('description', ''),
            metadata=data.get('metadata'),
            caller=_caller(),
        )), 201

    @app.route('/api/transactions/contract-call', methods=['POST'])
    def propose_contract_call():
        """Propose an ABI-encoded contract function call"""
        data = _json_body()
        return jsonify(_coordinator().propose_contract_call(
            contract_address=data.get('contractAddress'),
            function_signature=data.get('functionSignature'),
            args=data.get('args', []),
            value=data.get('value', 0),
            description=data.get('description', ''),
            metadata=data.get('metadata'),
            caller=_caller(),
        )), 201

    @app.route('/api/transactions/batch', methods=['POST'])
    def propose_batch():
        """Propose several operations executed atomically through MultiSend"""
        data = _json_body()
        return jsonify(_coordinator().propose_batch(
            sub_operations=data.get('transactions'),
            description=data.get('description', ''),
            metadata=data.get('metadata'),
            caller=_caller(),
        )), 201

    @app.route('/api/emergency/pause', methods=['POST'])
    def emergency_pause():
        """Propose an emergency pause of a contract"""
        data = _json_body()
        return jsonify(_coordinator().emergency_action(
            target_contract=data.get('contractAddress'),
            reason=data.get('reason', ''),
            caller=_caller(),
        )), 201

    @app.route('/api/transactions/<transaction_id>/signatures', methods=['POST'])
    def add_signature(transaction_id):
        """Add an owner signature; signer defaults to the caller"""
        data = _json_body()
        caller = _caller()
        return jsonify(_coordinator().add_signature(
            transaction_id,
            signer=data.get('signer') or caller,
            signature=data.get('signature'),
            caller=caller,
        ))

    @app.route('/api/transactions/<transaction_id>/execute', methods=['POST'])
    def execute_transaction(transaction_id):
        return jsonify(_coordinator().execute(transaction_id, caller=_caller()))

    @app.route('/api/transactions/<transaction_id>/reconcile', methods=['POST'])
    def reconcile_transaction(transaction_id):
        return jsonify(_coordinator().reconcile(transaction_id, caller=_caller()))

    @app.route('/api/transactions/<transaction_id>')
    def get_transaction(transaction_id):
        return jsonify(_coordinator().get_status(transaction_id))

    @app.route('/api/transactions')
    def list_transactions():
        """List transactions with optional status/creator filters"""
        return jsonify(_coordinator().list_transactions(
            status=request.args.get('status'),
            created_by=request.args.get('created_by'),
            page=request.args.get('page', 1, type=int),
            limit=request.args.get('limit', type=int),
        ))

    @app.route('/api/reconciliation')
    def pending_reconciliation():
        return jsonify({'success': True, 'records': _coordinator().pending_reconciliation()})

    @app.route('/api/maintenance/expire', methods=['POST'])
    def expire_transactions():
        return jsonify(_coordinator().sweep_expired())

    return app


def build_coordinator_from_env() -> MultisigCoordinator:
    """Wire a coordinator against the Safe configured in the environment"""
    from multisig_coordinator.gateways.web3_chain import Web3ChainGateway

    config = CoordinatorConfig.from_env()
    gateway = Web3ChainGateway.from_config(config)
    logger.info("Coordinator initialized for Safe %s on chain %d", config.custody_address, config.chain_id)
    return MultisigCoordinator(config, gateway, InMemoryRecordStore())


if __name__ == "__main__":
    configure_logging()
    app = create_app(build_coordinator_from_env())
    port = int(os.environ.get("PORT", 10000))
    app.run(
        host="0.0.0.0",
        port=port,
        debug=False
    )
