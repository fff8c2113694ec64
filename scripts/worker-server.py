#!/usr/bin/env python3
"""Serve power-repl sessions from a subordinate worker process.

The parent process forks one worker; the worker listens on a loopback
port and records it at the socket path, the way a worker that cannot
own a named socket has to. Attach with:

    powerrepl connect /tmp/power-repl.sock
"""
import asyncio
import multiprocessing
import os
import tempfile

from powerrepl import serve

SOCK_PATH = os.path.join(tempfile.gettempdir(), "power-repl.sock")

counter = 0


async def tick():
    global counter
    while True:
        counter += 1
        await asyncio.sleep(1)


async def worker_main():
    server = await serve(SOCK_PATH, port_file=True)
    print(f"worker {os.getpid()} serving via {SOCK_PATH}")
    async with server:
        await tick()


def run_worker():
    asyncio.run(worker_main())


if __name__ == "__main__":
    worker = multiprocessing.Process(target=run_worker, name="power-repl-worker")
    worker.start()
    try:
        worker.join()
    except KeyboardInterrupt:
        worker.terminate()
