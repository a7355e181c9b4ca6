from bulkdeploy.cli import main

raise SystemExit(main())
