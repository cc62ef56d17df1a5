from setuptools import setup, find_packages

setup(
    name='mcp-gateway',
    version='0.1.0',
    packages=find_packages(where='src'),
    package_dir={'': 'src'},
    include_package_data=True,
    description='JSON-RPC gateway exposing Gemini text generation over WebSockets.',
    author='jmikedupont2',
    author_email='jmikedupont2@example.com',
    install_requires=[
        'anyio>=3.7',
        'httpx>=0.24',
        'fastapi>=0.110',
        'prometheus-client>=0.17',
        'python-dotenv',
        'requests',
        'uvicorn[standard]>=0.22',
    ],
    extras_require={
        'test': [
            'pytest>=7',
        ],
    },
    entry_points={
        'console_scripts': ['mcp-gateway=mcp_gateway.cli:main'],
    },
    classifiers=[
        'Programming Language :: Python :: 3',
        'License :: OSI Approved :: MIT License',
        'Operating System :: OS Independent',
    ],
    python_requires='>=3.10',
    zip_safe=False,
)
