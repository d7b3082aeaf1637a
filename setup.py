from setuptools import setup, find_packages

setup(
    name="appbase",
    version="0.1.0",
    description="Content management backend with approval workflow, secret-prefix management surfaces and a public read API",
    packages=find_packages(include=["appbase", "appbase.*"]),
    python_requires=">=3.9",
    install_requires=[
        "Flask>=3.0.0",
        "Flask-SQLAlchemy>=3.1.0",
        "SQLAlchemy>=2.0.0",
        "Flask-JWT-Extended>=4.6.0",
        "PyJWT>=2.8.0",
        "Werkzeug>=3.0.0",
        "Flask-Limiter>=3.5.0",
        "MarkupSafe>=2.1.0",
        "click>=8.1.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
        ]
    },
)
