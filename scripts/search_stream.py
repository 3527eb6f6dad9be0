#!/usr/bin/env python3
"""
Command-line stream consumer for the Dishola search API.
Runs one search, prints events as they arrive, then the merged results.
"""
import argparse
import asyncio
import sys

from dishola.client.state_machine import SearchState
from dishola.client.stream_consumer import StreamingSearchClient
from dishola.search.models import EventType, SearchRequest, StreamEvent


async def print_event(event: StreamEvent):
    if event.type == EventType.AI_DISH:
        print(f"  🤖 {event.data['dish']['name']} @ {event.data['restaurant']['name']}")
    elif event.type == EventType.DB_RESULTS:
        print(f"  🗄️ {len(event.data)} community results")
    elif event.type == EventType.AI_PROGRESS:
        print(f"  … {event.data}")
    else:
        print(f"  [{event.type.value}]")


async def run_search(args) -> int:
    request = SearchRequest.from_params(
        args.query, args.tastes, args.lat, args.long, sort=args.sort, address=args.address or ""
    )
    client = StreamingSearchClient(base_url=args.base_url, timeout=args.timeout)
    session = await client.search(request, on_event=None if args.quiet else print_event)

    if session.state == SearchState.ERROR:
        print(f"❌ {session.error} ({session.error_kind})")
        return 1

    if session.ai_error:
        print(f"⚠️ {session.ai_error}")
    if session.time_to_first_dish is not None:
        print(f"⏱️ First dish after {session.time_to_first_dish}ms")

    print(f"\nResults sorted by {session.sort_by.value}:")
    for idx, tagged in enumerate(session.merged_dishes(), 1):
        rec = tagged.recommendation
        distance = rec.distance or "?"
        print(f"{idx:2}. [{tagged.source}] {rec.dish.name} - {rec.restaurant.name} ({rec.dish.rating}★, {distance})")
    return 0


def main():
    parser = argparse.ArgumentParser(description="Stream a Dishola search from the command line")
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("-q", "--query", type=str, help="Free-text dish query")
    group.add_argument("-t", "--tastes", type=str, help="Comma-separated tastes")
    parser.add_argument("--lat", type=str, default="37.7897", help="Latitude")
    parser.add_argument("--long", type=str, default="-122.3942", help="Longitude")
    parser.add_argument("--address", type=str, help="Display address")
    parser.add_argument("--sort", choices=["distance", "rating"], default="distance", help="Result ordering")
    parser.add_argument("--base-url", type=str, default="http://localhost:8000", help="API base URL")
    parser.add_argument("--timeout", type=float, default=60.0, help="Overall search timeout in seconds")
    parser.add_argument("--quiet", action="store_true", help="Only print final results")
    args = parser.parse_args()

    try:
        sys.exit(asyncio.run(run_search(args)))
    except KeyboardInterrupt:
        print("\n⏹️ Search cancelled")
        sys.exit(130)


if __name__ == "__main__":
    main()
