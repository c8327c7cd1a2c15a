from ordersync.main import main

raise SystemExit(main())
