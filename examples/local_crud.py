from __future__ import annotations

import asyncio
import logging
import os
import uuid

import boto3

from dynamodel_py import Model


def _client():
    return boto3.client(
        "dynamodb",
        endpoint_url=os.environ.get("DYNAMODB_ENDPOINT", "http://localhost:8000"),
        region_name=os.environ.get("AWS_REGION", "us-east-1"),
        aws_access_key_id=os.environ.get("AWS_ACCESS_KEY_ID", "dummy"),
        aws_secret_access_key=os.environ.get("AWS_SECRET_ACCESS_KEY", "dummy"),
    )


async def main() -> None:
    client = _client()
    notes = Model(
        f"dynamodel_example_{uuid.uuid4().hex[:12]}",
        {
            "owner": {"type": "text", "key": True},
            "seq": {"type": "number", "key": "range"},
            "title": "text",
            "views": {"type": "number", "default": 0},
            "tags": ["text"],
        },
        client=client,
        poll_interval=0.5,
    )

    try:
        await notes.put_item({"owner": "A", "seq": 1, "title": "first", "tags": {"x"}})
        await notes.put_item({"owner": "A", "seq": 10, "title": "tenth"})
        await notes.put_item({"owner": "A", "seq": 100, "title": "hundredth"})

        await notes.update_item({"owner": "A", "seq": 10}, {"$inc": {"views": 1}})
        print("get:", (await notes.get_item({"owner": "A", "seq": 10})).item)

        page = await notes.query({"owner": "A", "seq": {"$lt": 50}}).scan_forward(False)
        print("query seq < 50:", page.items)

        cursor = notes.scan().limit(2)
        print("scan:", [item["seq"] async for item in cursor.iterate()])
    finally:
        await notes.delete_table()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main())
