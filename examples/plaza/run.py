"""
Plaza: four Pix around the Central Plaza
========================================

WHAT THIS SHOWS:
- Loading a world from examples/worlds/plaza.json
- Ticking the world with a manual clock (no real waiting)
- The offline idle generator by default, a real model with LLM_PROVIDER set
- Saving the world to disk with JsonPersistence

RUN:
    python -m examples.plaza.run
    LLM_PROVIDER=openai OPENAI_API_KEY=... python -m examples.plaza.run --ticks 5
"""

import argparse
import asyncio
import random

from pixelverse import JsonPersistence, ManualClock, Orchestrator, WorldLoader, build_generator
from pixelverse.config import Config


async def main(ticks: int, seed: int, data_dir: str) -> None:
    print(Config.display())
    rng = random.Random(seed)
    clock = ManualClock()

    orchestrator = Orchestrator(
        persistence=JsonPersistence(data_dir),
        generator=build_generator(rng=rng),
        clock=clock,
        rng=rng,
        world=WorldLoader().load("plaza"),
    )

    await orchestrator.initialize()
    for _ in range(ticks):
        outcomes = await orchestrator.run_tick()
        for outcome in outcomes:
            if outcome.action is not None:
                print(f"    {outcome.agent_id}: {outcome.action.summary}")
        clock.advance(orchestrator.tick_interval)

    print("\nWhere everyone ended up:")
    for location_id, count in orchestrator.locations.populations().items():
        if count:
            print(f"  {location_id}: {', '.join(orchestrator.locations.occupants(location_id))}")

    print("\nA chat with Mochi:")
    print(f"  > Are you an AI?\n  {await orchestrator.chat('mochi', 'Are you an AI?')}")
    await orchestrator.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run the plaza world")
    parser.add_argument("--ticks", type=int, default=10)
    parser.add_argument("--seed", type=int, default=7)
    parser.add_argument("--data-dir", default=str(Config.DATA_DIR))
    args = parser.parse_args()
    asyncio.run(main(args.ticks, args.seed, args.data_dir))
