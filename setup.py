from setuptools import setup, find_packages

setup(
    name="agent_workbench",
    version="0.3.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "pyyaml",
        # Strict-apply syntax check
        "tree-sitter>=0.22",
        "tree-sitter-python",
        "tree-sitter-javascript",
        "tree-sitter-typescript",
        "tree-sitter-java",
        "tree-sitter-c",
        "tree-sitter-cpp",
        "tree-sitter-go",
        "tree-sitter-rust",
        "tree-sitter-ruby",
        "tree-sitter-php",
        "tree-sitter-c-sharp",
        # Corpus watcher and index progress
        "watchdog>=3.0",
        "tqdm>=4.60",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "workbench=agent_workbench.cli:main",
        ],
    },
    author="Uday Kanth",
    description="Local documentation search and safe file patching tools for coding agents.",
)
