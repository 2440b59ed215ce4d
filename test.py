import asyncio, websockets, json

URI = "ws://127.0.0.1:8000/ws/chat/"


async def client(public_key, greeting):
    async with websockets.connect(URI) as ws:
        await ws.send(json.dumps({"type": "join", "public_key": public_key}))
        while True:
            event = json.loads(await ws.recv())
            print(public_key, event)
            if event.get("state") == "matched":
                await ws.send(json.dumps({"type": "input", "text": greeting}))
                print(public_key, json.loads(await ws.recv()))
                print(public_key, json.loads(await ws.recv()))
                return


async def t():
    await asyncio.gather(client("alice", "hi from alice"), client("bob", "hi from bob"))

asyncio.run(t())
