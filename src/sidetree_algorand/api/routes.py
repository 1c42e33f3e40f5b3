"""
Blockchain service HTTP routes for a Sidetree node.

Endpoints:
- GET /transactions?since=&transaction-time-hash= - Page of anchored transactions
- POST /transactions - Anchor a string ({"anchorFileHash": "..."})
- POST /transactions/firstValid - First still-canonical transaction of a list
- GET /time - Latest blockchain time
- GET /time/<hash> - Blockchain time of a block hash
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Tuple

from flask import Flask, Response, jsonify, request
from pydantic import BaseModel, Field, ValidationError

from ..core.blockchain_exceptions import AnchorServiceError, ClientInputError
from ..core.models import AnchoredTransaction

if TYPE_CHECKING:
    from ..core.blockchain_observer import BlockchainObserver

logger = logging.getLogger(__name__)


class WriteTransactionInput(BaseModel):
    anchorFileHash: str = Field(min_length=1)


class TransactionInput(BaseModel):
    transactionNumber: int = Field(ge=0)
    transactionTime: int = Field(ge=0)
    transactionTimeHash: str = Field(min_length=1)
    anchorString: str = ""


class FirstValidInput(BaseModel):
    transactions: list[TransactionInput]


def _error_response(error: AnchorServiceError) -> Tuple[Response, int]:
    status = 400 if isinstance(error, ClientInputError) else 500
    return jsonify({"code": error.code}), status


def _bad_request(message: str) -> Tuple[Response, int]:
    logger.info(
        "Rejected request: %s",
        message,
        extra={"event": "api.bad_request", "path": request.path},
    )
    return jsonify({"code": ClientInputError.code}), 400


def _json_body() -> Any:
    return request.get_json(force=True, silent=True)


def register_transaction_routes(app: Flask, observer: "BlockchainObserver") -> None:
    @app.route("/transactions", methods=["GET"])
    def get_transactions():
        since_raw = request.args.get("since")
        block_hash = request.args.get("transaction-time-hash")
        since = None
        if since_raw is not None:
            try:
                since = int(since_raw)
            except ValueError:
                return _bad_request(f"since must be an integer, got {since_raw!r}")
        return jsonify(observer.transactions(since, block_hash)), 200

    @app.route("/transactions", methods=["POST"])
    def write_transaction():
        try:
            body = WriteTransactionInput.model_validate(_json_body())
        except ValidationError as e:
            return _bad_request(str(e))
        txid = observer.write_transaction(body.anchorFileHash)
        return jsonify({"transactionId": txid}), 200

    @app.route("/transactions/firstValid", methods=["POST"])
    def first_valid_transaction():
        try:
            body = FirstValidInput.model_validate(_json_body())
        except ValidationError as e:
            return _bad_request(str(e))
        candidates = [AnchoredTransaction.from_dict(t.model_dump()) for t in body.transactions]
        valid = observer.first_valid_transaction(candidates)
        if valid is None:
            return Response("", status=200)
        return jsonify(valid.to_dict()), 200


def register_time_routes(app: Flask, observer: "BlockchainObserver") -> None:
    @app.route("/time", methods=["GET"])
    def get_time():
        return jsonify(observer.time().to_dict()), 200

    @app.route("/time/<block_hash>", methods=["GET"])
    def get_time_of_hash(block_hash: str):
        return jsonify(observer.time(block_hash).to_dict()), 200


def create_app(observer: "BlockchainObserver") -> Flask:
    """Build the Flask app serving `observer`."""
    app = Flask("sidetree_algorand")
    register_transaction_routes(app, observer)
    register_time_routes(app, observer)

    @app.errorhandler(AnchorServiceError)
    def handle_service_error(error: AnchorServiceError):
        log = logger.info if isinstance(error, ClientInputError) else logger.error
        log(
            "Request failed: %s",
            error.message,
            extra={"event": "api.request_failed", "code": error.code, "path": request.path},
        )
        return _error_response(error)

    @app.errorhandler(404)
    def handle_unknown_path(_error):
        return Response("", status=400)

    return app
