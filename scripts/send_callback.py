"""Post a sample STK callback to a running instance.

Useful for settling a pending transaction by hand without the real gateway.
"""

import argparse
import json
from pathlib import Path

import httpx


def build_callback(checkout_request_id: str, result_code: int, result_desc: str, amount: int, phone: str) -> dict:
    """Gateway-shaped callback envelope; metadata only on success."""

    stk = {
        "MerchantRequestID": "manual-test",
        "CheckoutRequestID": checkout_request_id,
        "ResultCode": result_code,
        "ResultDesc": result_desc,
    }
    if result_code == 0:
        stk["CallbackMetadata"] = {
            "Item": [
                {"Name": "Amount", "Value": amount},
                {"Name": "MpesaReceiptNumber", "Value": "MANUAL0001"},
                {"Name": "TransactionDate", "Value": 20240101120000},
                {"Name": "PhoneNumber", "Value": int(phone)},
            ]
        }
    return {"Body": {"stkCallback": stk}}


def main() -> None:
    """Parse CLI args and post one callback envelope."""

    parser = argparse.ArgumentParser(description="Send an STK callback to the payment service.")
    parser.add_argument("--base-url", default="http://localhost:8000")
    parser.add_argument("--checkout-request-id", default=None)
    parser.add_argument("--result-code", type=int, default=0)
    parser.add_argument("--result-desc", default="The service request is processed successfully.")
    parser.add_argument("--amount", type=int, default=1)
    parser.add_argument("--phone", default="254708374149")
    parser.add_argument("--file", dest="json_file", default=None, help="Send a raw JSON body from file")
    args = parser.parse_args()

    if args.json_file:
        payload = json.loads(Path(args.json_file).read_text())
    elif args.checkout_request_id:
        payload = build_callback(
            args.checkout_request_id, args.result_code, args.result_desc, args.amount, args.phone
        )
    else:
        raise SystemExit("Provide --checkout-request-id or --file")

    resp = httpx.post(f"{args.base_url}/api/mpesa/callback", json=payload, timeout=10.0)
    print(f"status={resp.status_code} body={resp.text}")
    if args.checkout_request_id:
        txn = httpx.get(f"{args.base_url}/api/transactions/{args.checkout_request_id}", timeout=10.0)
        print(f"transaction={txn.text}")


if __name__ == "__main__":
    main()
