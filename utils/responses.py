from fastapi.responses import JSONResponse


def success_response(data=None, status=200):
    return JSONResponse(status_code=status, content=data or {})


def error_response(error, status=400, details=None):
    content = {"error": error}
    if details is not None:
        content["details"] = details
    return JSONResponse(status_code=status, content=content)
