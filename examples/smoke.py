import asyncio
import sys

from inference_gateway.config import EnvApiKeyLookup, build_router, get_settings
from inference_gateway.logging_config import setup_logging
from inference_gateway.types import Attachment, GenerationRequest, ProviderId, RemoteTarget, Turn


async def main(config_path: str | None = None) -> None:
    settings = get_settings(config_path)
    setup_logging(settings.logging.level, settings.logging.use_json)
    router = build_router(settings)
    keys = EnvApiKeyLookup()

    # Capability gating: DeepSeek is text only, so this fails before any network call.
    gated = GenerationRequest(
        turns=[
            Turn(
                role="user",
                text="what is in this picture?",
                attachments=[Attachment(kind="image", filename="cat.png", data=b"\x89PNG")],
            )
        ]
    )
    async with router.generate(
        RemoteTarget(provider=ProviderId.DEEPSEEK, model_id="deepseek-chat"), gated, lambda p: "DUMMY"
    ) as stream:
        async for event in stream:
            print("Expected failure:", event.type, event.error_kind, event.detail)

    if not keys(ProviderId.OPENAI):
        print("Set OPENAI_API_KEY to stream a real completion.")
        await router.aclose()
        return

    request = GenerationRequest(turns=[Turn(role="user", text="Say hello in three languages.")])
    async with router.generate(RemoteTarget(provider=ProviderId.OPENAI, model_id="gpt-4o"), request, keys) as stream:
        async for event in stream:
            if event.type == "token":
                print(event.text, end="", flush=True)
            else:
                print(f"\n[{event.type}] {event.detail or ''}")
    await router.aclose()


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else None))
