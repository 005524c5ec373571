import asyncio
import logging
from typing import Optional

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from esp32_flasher.core.orchestrator import SessionOrchestrator
from esp32_flasher.utils.exceptions import CommandValidationError

logger = logging.getLogger(__name__)


# Data models for better type safety
class SelectDeviceRequest(BaseModel):
    device_id: str


class FlashRequest(BaseModel):
    device_id: Optional[str] = None


class SendRequest(BaseModel):
    text: str


class BaudRequest(BaseModel):
    baud_rate: int


class CommandCreateRequest(BaseModel):
    name: str
    command: str


def create_app(orchestrator: SessionOrchestrator) -> FastAPI:
    """Create the FastAPI application."""
    app = FastAPI(title="ESP32 Flasher Web", version="1.0.0")
    orchestrator.attach_serial(auto_connect=False)

    @app.get("/api/status")
    async def get_status():
        """Session status and busy indicator."""
        state = orchestrator.serial.state
        return {
            "connected": state.connected,
            "port": state.active_port,
            "baud_rate": state.baud_rate,
            "selected_device": orchestrator.selected_device,
            "busy": orchestrator.is_busy,
            "transcript_length": len(orchestrator.transcript),
        }

    @app.get("/api/transcript")
    async def get_transcript(start: int = 0):
        """Transcript lines from index *start* onward."""
        if start < 0:
            raise HTTPException(status_code=400, detail="start must be >= 0")
        return {"start": start, "lines": orchestrator.transcript.lines(start)}

    @app.get("/api/devices")
    async def get_devices(refresh: bool = False):
        """API endpoint to list devices from the manifest."""
        devices = await asyncio.to_thread(orchestrator.load_devices, refresh)
        return {"devices": [d.to_dict() for d in devices]}

    @app.post("/api/devices/select")
    async def select_device(request: SelectDeviceRequest):
        if not orchestrator.select_device(request.device_id):
            raise HTTPException(status_code=400, detail="Device id cannot be empty")
        return {"success": True, "selected_device": orchestrator.selected_device}

    @app.post("/api/flash", status_code=202)
    async def flash_firmware(request: FlashRequest):
        """Start a firmware install in the background."""
        if orchestrator.is_busy:
            raise HTTPException(status_code=409, detail="Installation already in progress")
        device_id = request.device_id or orchestrator.selected_device
        if not device_id or not device_id.strip():
            raise HTTPException(status_code=400, detail="No device selected")
        orchestrator.install_firmware_async(device_id)
        return {"started": True, "device_id": device_id.strip()}

    @app.get("/api/ports")
    async def get_ports():
        ports = await asyncio.to_thread(orchestrator.serial.list_ports)
        return {"ports": ports}

    @app.post("/api/serial/connect")
    async def connect():
        connected = await asyncio.to_thread(orchestrator.connect)
        return {"success": connected, "port": orchestrator.serial.state.active_port}

    @app.post("/api/serial/disconnect")
    async def disconnect():
        await asyncio.to_thread(orchestrator.disconnect)
        return {"success": True}

    @app.post("/api/serial/send")
    async def send(request: SendRequest):
        sent = await asyncio.to_thread(orchestrator.send_command, request.text)
        return {"success": sent}

    @app.post("/api/serial/baud")
    async def set_baud(request: BaudRequest):
        if request.baud_rate <= 0:
            raise HTTPException(status_code=400, detail=f"Invalid baud rate: {request.baud_rate}")
        applied = await asyncio.to_thread(orchestrator.set_baud_rate, request.baud_rate)
        return {"success": applied, "baud_rate": orchestrator.baud_rate}

    @app.get("/api/commands")
    async def list_commands():
        return {"commands": [c.to_dict() for c in orchestrator.registry.list()]}

    @app.post("/api/commands", status_code=201)
    async def create_command(request: CommandCreateRequest):
        try:
            record = orchestrator.add_custom_command(request.name, request.command)
        except CommandValidationError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return {"success": True, "command": record.to_dict()}

    @app.delete("/api/commands/{command_id}")
    async def delete_command(command_id: str):
        orchestrator.delete_custom_command(command_id)
        return {"success": True}

    @app.post("/api/commands/{command_id}/run")
    async def run_command(command_id: str):
        if orchestrator.registry.get(command_id) is None:
            raise HTTPException(status_code=404, detail="Command not found")
        sent = await asyncio.to_thread(orchestrator.run_custom_command, command_id)
        return {"success": sent}

    @app.websocket("/ws/transcript")
    async def websocket_transcript(websocket: WebSocket):
        """Stream transcript lines; text received from the client is sent to the device."""
        await websocket.accept()
        loop = asyncio.get_running_loop()
        # Queue to hand off lines from worker threads to the WebSocket loop
        queue: "asyncio.Queue[str]" = asyncio.Queue()

        def on_line(line: str):
            loop.call_soon_threadsafe(queue.put_nowait, line)

        backlog = orchestrator.transcript.attach(on_line)
        receive_task = asyncio.ensure_future(websocket.receive_text())
        get_task = None
        try:
            for line in backlog:
                await websocket.send_text(line)

            while True:
                get_task = asyncio.ensure_future(queue.get())
                done, _ = await asyncio.wait(
                    {get_task, receive_task}, return_when=asyncio.FIRST_COMPLETED
                )
                if receive_task in done:
                    text = receive_task.result()
                    if text.strip():
                        await asyncio.to_thread(orchestrator.send_command, text.strip())
                    receive_task = asyncio.ensure_future(websocket.receive_text())
                if get_task in done:
                    await websocket.send_text(get_task.result())
                else:
                    get_task.cancel()
        except WebSocketDisconnect:
            logger.debug("Transcript client disconnected")
        finally:
            orchestrator.transcript.remove_listener(on_line)
            for task in (receive_task, get_task):
                if task is not None and not task.done():
                    task.cancel()

    return app
