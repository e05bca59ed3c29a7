"""
In-memory NoteBuddy backend for end-to-end tests.

Implements the endpoints the client consumes with the same JSON shapes,
including the "Basic <user>:<password>" Authorization header. Transcription
jobs report "processing" on the first status check and "completed" after.
"""

from typing import Optional

from fastapi import FastAPI, File, Header, Request, UploadFile
from fastapi.responses import JSONResponse


def _unauthorized() -> JSONResponse:
    return JSONResponse(status_code=401, content={"error": "Unauthorized"})


def build_stub_backend() -> FastAPI:
    api = FastAPI()
    api.state.data = {
        "users": {},
        "notes": [],
        "next_id": 1,
        "jobs": {},
        "uploads": [],
    }
    data = api.state.data

    def current_user(authorization: Optional[str]) -> Optional[str]:
        if not authorization or not authorization.startswith("Basic "):
            return None
        username, _, password = authorization[len("Basic "):].partition(":")
        if data["users"].get(username) != password:
            return None
        return username

    @api.get("/health")
    async def health():
        return {"status": "healthy"}

    @api.post("/register")
    async def register(request: Request):
        body = await request.json()
        if body["username"] in data["users"]:
            return JSONResponse(status_code=409, content={"error": "Username already exists"})
        data["users"][body["username"]] = body["password"]
        return {"message": "User registered"}

    @api.post("/login")
    async def login(request: Request):
        body = await request.json()
        if data["users"].get(body["username"]) != body["password"]:
            return JSONResponse(status_code=401, content={"error": "Invalid username or password"})
        return {"message": "Login successful"}

    @api.get("/userNotes")
    async def user_notes(authorization: Optional[str] = Header(None)):
        user = current_user(authorization)
        if user is None:
            return _unauthorized()
        return [
            {"id": n["id"], "title": n["title"], "note": n["note"]}
            for n in data["notes"]
            if n["user"] == user
        ]

    @api.post("/postNote")
    async def post_note(request: Request, authorization: Optional[str] = Header(None)):
        user = current_user(authorization)
        if user is None:
            return _unauthorized()
        body = await request.json()
        note = {"id": data["next_id"], "user": user, "title": body["title"], "note": body["note"]}
        data["next_id"] += 1
        data["notes"].append(note)
        return {"message": "Note saved", "id": note["id"]}

    @api.delete("/deleteNote/{note_id}")
    async def delete_note(note_id: int, authorization: Optional[str] = Header(None)):
        user = current_user(authorization)
        if user is None:
            return _unauthorized()
        before = len(data["notes"])
        data["notes"] = [
            n for n in data["notes"] if not (n["id"] == note_id and n["user"] == user)
        ]
        if len(data["notes"]) == before:
            return JSONResponse(status_code=404, content={"error": "Note not found"})
        return {"message": "Note deleted"}

    @api.post("/summary")
    async def summary(request: Request, authorization: Optional[str] = Header(None)):
        if current_user(authorization) is None:
            return _unauthorized()
        body = await request.json()
        return {"Summary": f"Summary of {body['URL']}"}

    @api.post("/upload-pdf")
    async def upload_pdf(
        pdf: UploadFile = File(...), authorization: Optional[str] = Header(None)
    ):
        if current_user(authorization) is None:
            return _unauthorized()
        content = await pdf.read()
        return {"summary": f"{pdf.filename}: {len(content)} bytes summarized"}

    @api.post("/upload-audio")
    async def upload_audio(
        audio: UploadFile = File(...), authorization: Optional[str] = Header(None)
    ):
        if current_user(authorization) is None:
            return _unauthorized()
        content = await audio.read()
        job_id = f"job-{len(data['jobs']) + 1}"
        data["jobs"][job_id] = {"checks": 0, "size": len(content)}
        data["uploads"].append({"filename": audio.filename, "size": len(content)})
        return {"transcription_id": job_id}

    @api.get("/check-transcription/{job_id}")
    async def check_transcription(job_id: str, authorization: Optional[str] = Header(None)):
        if current_user(authorization) is None:
            return _unauthorized()
        job = data["jobs"].get(job_id)
        if job is None:
            return JSONResponse(status_code=404, content={"error": "Unknown job"})
        job["checks"] += 1
        if job["checks"] < 2:
            return {"status": "processing"}
        return {"status": "completed", "transcript": f"transcript of {job['size']} bytes"}

    @api.post("/process-transcript")
    async def process_transcript(request: Request, authorization: Optional[str] = Header(None)):
        if current_user(authorization) is None:
            return _unauthorized()
        body = await request.json()
        return {"summary": f"# Notes\n\n{body['transcript']}"}

    return api
