#!/usr/bin/env python3
"""Minimal example app observed by debugtap.

Usage:
    DEBUGTAP_ENV=development python server.py

The app listens on :8000; open http://127.0.0.1:5050 (or connect a
WebSocket client to ws://127.0.0.1:5050/ws) to watch its logs and
requests live. With DEBUGTAP_ENV=production nothing is installed.
"""
import asyncio
import logging

from fastapi import FastAPI, Request

import debugtap

logging.basicConfig(level=logging.INFO)
log = logging.getLogger('example')

app = FastAPI(title='debugtap example')

# Constructs the engine, pipes the app and starts the observer server
engine = debugtap.attach(app)
engine.capture_logging()
console = engine.console


@app.get('/hello/{name}')
async def hello(name: str):
    console.log('saying hello to', name)
    return {'message': f'Hello, {name}!'}


@app.post('/echo')
async def echo(request: Request):
    payload = await request.json()
    await asyncio.sleep(0.05)
    log.info('echoing %d keys', len(payload))
    return payload


@app.get('/boom')
async def boom():
    console.error(RuntimeError('boom'))
    raise RuntimeError('boom')


if __name__ == '__main__':
    import uvicorn

    print(f"""
  debugtap example
  App:      http://localhost:8000
  Observer: {engine.config.observer_url} ({'on' if not engine.deactivated else 'off'})
""")

    uvicorn.run(app, host='127.0.0.1', port=8000)
