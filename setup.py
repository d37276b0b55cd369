from setuptools import setup, find_packages
setup(
    name="permit_sync",
    version="0.1.0",
    package_dir={"": "src"},
    packages=find_packages("src"),
    include_package_data=True,
    python_requires=">=3.11",
    install_requires=[
        "pydantic>=2",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        'console_scripts': [
            'permit-sync=permit_sync.__main__:_safe_main'
        ]
    }
)
