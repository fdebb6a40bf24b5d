#!/usr/bin/env python3
"""
Simple Hello World Crucible Example

Declares two local "resources": a directory and a file inside it. Run it
twice and only the file's content changes; remove the File declaration
and the next deploy deletes it.

    python -m crucible_py deploy crucible_py/examples/hello_world.py
    python -m crucible_py destroy crucible_py/examples/hello_world.py
"""

import shutil
from pathlib import Path

from crucible_py import LifecyclePhase, ResourceRegistry

APP_NAME = "hello-world"
REGISTRY = ResourceRegistry()

OUT_DIR = Path(".crucible") / "hello-world-out"


@REGISTRY.resource("local::Directory")
async def Directory(ctx, id, props):
    """A directory named after the resource's physical name."""
    if ctx.phase == LifecyclePhase.DELETE:
        if ctx.output:
            shutil.rmtree(ctx.output["path"], ignore_errors=True)
        return ctx.destroy()

    path = OUT_DIR / ctx.create_physical_name()
    path.mkdir(parents=True, exist_ok=True)
    return {"path": str(path)}


@REGISTRY.resource("local::File")
async def File(ctx, id, props):
    if ctx.phase == LifecyclePhase.DELETE:
        Path(ctx.output["path"]).unlink(missing_ok=True)
        return ctx.destroy()

    # moving to another directory is a new physical file
    if ctx.phase == LifecyclePhase.UPDATE and ctx.props["dir"] != props["dir"]:
        return ctx.replace()

    path = Path(props["dir"]["path"]) / props["name"]
    path.write_text(props["content"], encoding="utf-8")
    return {"path": str(path), "size": len(props["content"])}


async def program(scope):
    """Main program: a directory and a greeting file inside it."""
    directory = Directory("site")
    greeting = File("greeting", {
        "dir": directory,
        "name": "hello.txt",
        "content": f"Hello from {scope.stage}!\n",
    })
    return await greeting
