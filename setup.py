# setup.py

from setuptools import setup, find_packages

setup(
    name="proxmox-vm-balancer",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "requests",
        "urllib3",
        "SQLAlchemy>=1.4",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        'console_scripts': [
            'suggest-migrations=proxmox_balancer.cli:main',
        ],
    },
    description="Proxmox VE VM migration planning tool",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    keywords="proxmox virtualization load-balancing migration",
    python_requires=">=3.8",
)
