import asyncio
from pathlib import Path

from job_server import JobServer
from polling_request_client.config import configure_logging, load_request_model
from polling_request_client.errors import RequestError
from polling_request_client.orchestrator import PollingOrchestrator


async def job_finished(result):
    print(f"Job result: {result}")


def job_failed(error):
    print(f"Request failed ({error.domain}/{error.code}): {error.message}")


async def main():
    configure_logging()

    PORT = 8000
    server = JobServer(completion_time=5.0)
    await server.start(port=PORT)
    print(f"Server started on http://localhost:{PORT}")

    model = load_request_model(Path(__file__).with_name("request.json"))
    orchestrator = PollingOrchestrator()

    try:
        outcome = await orchestrator.start(model, job_finished, job_failed)
        print(f"Requests made: {outcome.attempts}")
        print(f"Total time: {outcome.elapsed_time:.6f}s")

        result = await orchestrator.make_result_request_after_polling()
        print(f"Final result: {result.unwrap()}")
    except RequestError as e:
        print(f"Error occurred: {e}")
    finally:
        await server.stop()

    await asyncio.sleep(1)


if __name__ == "__main__":
    asyncio.run(main())
