"""
Doit file to wrap development workflow commands.
"""

import shutil
from pathlib import Path

from doit import task_params
from doit.task import Task
from doit.tools import create_folder

PACKAGE = "haystack_link"

# artifact output
OUT_PATH = Path("__out__")

# test coverage results
TESTS_PATH = OUT_PATH / "test"
JUNIT_PATH = TESTS_PATH / "junit.xml"
COV_PATH = TESTS_PATH / "cov"
COV_HTML_PATH = COV_PATH / "html"
COV_XML_PATH = COV_PATH / "coverage.xml"

# static analysis results
ANALYSIS_PATH = OUT_PATH / "analysis"
MYPY_PATH = ANALYSIS_PATH / "mypy"
MYPY_HTML_PATH = MYPY_PATH / "html"
MYPY_XML_PATH = MYPY_PATH / "xml"


def cleanup_dir(output_dir: Path):
    if output_dir.exists():
        shutil.rmtree(output_dir)


@task_params(
    [
        {
            "name": "filter",
            "short": "k",
            "type": str,
            "default": "",
            "help": "Only run tests matching this expression",
        }
    ]
)
def task_pytest(filter: str) -> Task:
    """
    Run pytest and generate coverage reports.
    """

    args = [
        "pytest",
        f"--cov={PACKAGE}",
        f"--cov-report=html:{COV_HTML_PATH}",
        f"--cov-report=xml:{COV_XML_PATH}",
        f"--junitxml={JUNIT_PATH}",
    ]

    if filter:
        args.append(f"-k '{filter}'")

    return Task(
        "test",
        actions=[
            (create_folder, [COV_PATH]),
            " ".join(args),
        ],
        targets=[
            f"{COV_HTML_PATH}/index.html",
            COV_XML_PATH,
            JUNIT_PATH,
        ],
        file_dep=[],
        clean=[(cleanup_dir, [TESTS_PATH])],
    )


def task_format() -> Task:
    """
    Run formatters.
    """

    autoflake_args = [
        "autoflake",
        "--remove-all-unused-imports",
        "--remove-unused-variables",
        "-i",
        "-r",
        PACKAGE,
        "test",
    ]

    isort_args = [
        "isort",
        PACKAGE,
        "test",
        "dodo.py",
    ]

    black_args = [
        "black",
        PACKAGE,
        "test",
        "dodo.py",
    ]

    return Task(
        "format",
        actions=[
            " ".join(autoflake_args),
            " ".join(isort_args),
            " ".join(black_args),
        ],
        targets=[],
        file_dep=[],
    )


def task_analysis() -> Task:
    """
    Run static analysis.
    """

    mypy_args = [
        "mypy",
        "--html-report",
        str(MYPY_HTML_PATH),
        "--cobertura-xml-report",
        str(MYPY_XML_PATH),
        PACKAGE,
    ]

    return Task(
        "analysis",
        actions=[
            (create_folder, [MYPY_PATH]),
            " ".join(mypy_args),
        ],
        targets=[],
        file_dep=[],
        clean=[(cleanup_dir, [ANALYSIS_PATH])],
    )
