from setuptools import find_namespace_packages, setup


def get_requirements():
    with open("requirements.txt") as fp:
        return [
            x.strip() for x in fp.read().split("\n") if x.strip() and not x.startswith("#")
        ]


setup(
    name="herald",
    version="0.1.0",
    package_dir={"": "src"},
    packages=find_namespace_packages(where="src", include=["herald", "herald.*"]),
    python_requires=">=3.11",
    install_requires=get_requirements(),
    extras_require={"test": ["pytest>=7.0.1"]},
    tests_require=["pytest>=7.0.1"],
    entry_points={
        "console_scripts": [
            "herald-send-test-event=herald.scripts.send_test_event:main",
        ],
    },
)
