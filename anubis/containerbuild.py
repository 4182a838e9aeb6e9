"""Build and publish the container image with ko, reporting CI step outputs."""

from __future__ import annotations

import argparse
import json
import logging
import os
import shutil
import subprocess
import sys
from dataclasses import dataclass
from typing import List, Optional, Sequence

from anubis.logs import init_logging

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Image:
    repository: str
    tag: str


def parse_image_list(image_list: str) -> List[Image]:
    """Split newline-separated ``repository:tag`` references into images."""
    result = []
    for ref in image_list.split("\n"):
        if not ref:
            continue
        repository, sep, tag = ref.rpartition(":")
        if not sep:
            raise ValueError(f"image reference has no tag: {ref!r}")
        result.append(Image(repository=repository, tag=tag))
    if not result:
        raise ValueError("no images provided, bad flags")
    return result


def run(command: str) -> str:
    """Run ``command`` with ``sh -c`` and return its trimmed standard output."""
    sh = shutil.which("sh")
    if sh is None:
        raise FileNotFoundError("sh: executable file not found in $PATH")
    log.debug("running command", extra={"attrs": {"command": command}})
    completed = subprocess.run([sh, "-c", command], stdout=subprocess.PIPE, check=True)
    return completed.stdout.decode("utf-8", "replace").strip()


def set_output(key: str, val: str) -> None:
    print(f"::set-output name={key}::{val}")


def _env_default(name: str, fallback: str) -> str:
    return os.environ.get(name.upper().replace("-", "_"), fallback)


def _base(path: str) -> str:
    if not path:
        return "."
    stripped = path.rstrip("/")
    if not stripped:
        return "/"
    return stripped.rsplit("/", 1)[-1]


def _quote(value: str) -> str:
    return json.dumps(value, ensure_ascii=False)


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="containerbuild")

    def add(name: str, default: str, help_text: str, kind=str) -> None:
        parser.add_argument(
            f"-{name}",
            f"--{name}",
            dest=name.replace("-", "_"),
            type=kind,
            default=_env_default(name, default),
            help=help_text,
        )

    add("docker-annotations", os.environ.get("DOCKER_METADATA_OUTPUT_ANNOTATIONS", ""), "Docker image annotations")
    add("docker-labels", os.environ.get("DOCKER_METADATA_OUTPUT_LABELS", ""), "Docker image labels")
    add("docker-repo", "registry.int.xeserv.us/techaro/anubis", "Docker image repository for Anubis")
    add(
        "docker-tags",
        os.environ.get("DOCKER_METADATA_OUTPUT_TAGS", ""),
        "newline separated docker tags including the registry name",
    )
    add("github-event-name", "", "GitHub event name")
    add("pull-request-id", "-1", "GitHub pull request ID", int)
    add("slog-level", "INFO", "logging level")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = _parser().parse_args(argv)
    init_logging(args.slog_level)

    docker_repo: str = args.docker_repo
    docker_tags: str = args.docker_tags
    suffix = "/" + _base(docker_repo)
    ko_docker_repo = docker_repo[: -len(suffix)] if docker_repo.endswith(suffix) else docker_repo

    if args.github_event_name == "pull_request" and args.pull_request_id != -1:
        pr = args.pull_request_id
        docker_repo = f"ttl.sh/techaro/pr-{pr}/anubis"
        docker_tags = f"ttl.sh/techaro/pr-{pr}/anubis:24h"
        ko_docker_repo = f"ttl.sh/techaro/pr-{pr}"
        log.info(
            "Building image for pull request",
            extra={
                "attrs": {
                    "docker-repo": docker_repo,
                    "docker-tags": docker_tags,
                    "github-event-name": args.github_event_name,
                    "pull-request-id": pr,
                }
            },
        )

    set_output("docker_image", docker_tags.split("\n", 1)[0])

    try:
        version = run("git describe --tags --always --dirty")
        commit_timestamp = run("git log -1 --format='%ct'")
    except (OSError, subprocess.CalledProcessError) as err:
        sys.exit(str(err))

    log.debug(
        "ko env",
        extra={
            "attrs": {
                "KO_DOCKER_REPO": ko_docker_repo,
                "SOURCE_DATE_EPOCH": commit_timestamp,
                "VERSION": version,
            }
        },
    )
    os.environ["KO_DOCKER_REPO"] = ko_docker_repo
    os.environ["SOURCE_DATE_EPOCH"] = commit_timestamp
    os.environ["VERSION"] = version

    set_output("version", version)

    if not docker_tags:
        sys.exit("Must set --docker-tags or DOCKER_METADATA_OUTPUT_TAGS")

    try:
        images = parse_image_list(docker_tags)
    except ValueError as err:
        sys.exit(f"can't parse images: {err}")

    for img in images:
        if img.repository != docker_repo:
            log.error(
                "Something weird is going on. Wanted docker repo differs from contents of "
                "--docker-tags. Did a flag get set incorrectly?",
                extra={"attrs": {"wanted": docker_repo, "got": img.repository, "docker-tags": docker_tags}},
            )
            sys.exit(2)

    tags = ",".join(img.tag for img in images)
    command = (
        f"ko build --platform=all --base-import-paths --tags={_quote(tags)} --image-user=1000 "
        f"--image-annotation={_quote(args.docker_annotations)} "
        f"--image-label={_quote(args.docker_labels)} ./cmd/anubis | tail -n1"
    )
    try:
        output = run(command)
    except (OSError, subprocess.CalledProcessError) as err:
        sys.exit(f"can't run ko build, check stderr: {err}")

    _, sep, digest = output.partition("@")
    if not sep:
        sys.exit(f"ko build output has no digest: {output!r}")
    set_output("digest", digest)


if __name__ == "__main__":
    main()