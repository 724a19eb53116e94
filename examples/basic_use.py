import asyncio
from pathlib import Path

from taskloop.agent import AgentConfig
from taskloop.model import ChatInferenceClient
from taskloop.runtime import AgentHost, FileStateStore, Scheduler

BASE_DIR = ".taskloop"


async def main():
    config = AgentConfig.from_ini(Path(__file__).parent.parent / "taskloop" / "config.ini")
    host = AgentHost(
        store=FileStateStore(base_dir=f"{BASE_DIR}/state"),
        scheduler=Scheduler(path=f"{BASE_DIR}/schedules.json"),
        inference=ChatInferenceClient(),
        config=config,
    )

    # Re-arm reactivations left over from a previous run
    restored = await host.start()
    print(f"Restored {restored} scheduled steps\n")

    created = await host.create_worker_agent(
        chat_id="chat-example",
        name="haiku-writer",
        purpose="Write a haiku about autumn rain",
    )
    worker = host.get_agent_by_name(created["worker_id"])
    print(f"Created {created['worker_id']}\n")

    print(await worker.start())

    # Let the timer drive the loop until it goes idle
    while True:
        await asyncio.sleep(2)
        info = await worker.get_info()
        print(
            f"queue={info['queue_length']} completed={len(info['completed_tasks'])} "
            f"running={info['is_running']}"
        )
        if not info["is_running"]:
            break

    for task in info["completed_tasks"]:
        print(f"- [{task['kind']}] {task['description']}: {task['result'] or task['error']}")

    await host.close()


if __name__ == "__main__":
    asyncio.run(main())
