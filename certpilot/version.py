import sys
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as get_version

# Initialize version as unknown
version = "?"

try:
    version = get_version("certpilot")
except PackageNotFoundError:
    print(
        "Cannot determine certpilot version. "
        'If running from source you should at least run "pip install -e ."',
        file=sys.stderr,
    )

BANNER = "certpilot v{} - certificate requests through certreq\n".format(version)
