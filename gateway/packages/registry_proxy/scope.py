"""Token scope derivation for Registry v2 API paths."""

CATALOG_SEGMENT = "_catalog"
CATALOG_SCOPE = "registry:catalog:*"

# Path segments that end the repository name in a Registry v2 URL
REPOSITORY_MARKERS = frozenset({"manifests", "blobs", "tags", "referrers"})

# Docker Hub stores unqualified images (e.g. "nginx") under "library/"
DEFAULT_NAMESPACE = "library"


def derive_scope(path: str) -> str:
    """Map a registry API path to the token scope it needs.

    Examples:
        /v2/nginx/manifests/latest      -> repository:library/nginx:pull
        /v2/myorg/myapp/blobs/sha256:ab -> repository:myorg/myapp:pull
        /v2/_catalog                    -> registry:catalog:*
        /v2/                            -> "" (no scope)

    Args:
        path: Request path, including the leading "/v2"

    Returns:
        Scope string, or an empty string when no scope applies
    """
    segments = [segment for segment in path.split("/") if segment]

    if len(segments) < 2:
        return ""

    if CATALOG_SEGMENT in segments:
        return CATALOG_SCOPE

    marker_index = next(
        (
            index
            for index, segment in enumerate(segments)
            if segment in REPOSITORY_MARKERS
        ),
        None,
    )
    if marker_index is None:
        repository = "/".join(segments[1:])
    else:
        repository = "/".join(segments[1:marker_index])

    if not repository:
        return ""

    if "/" not in repository:
        repository = f"{DEFAULT_NAMESPACE}/{repository}"

    return f"repository:{repository}:pull"
